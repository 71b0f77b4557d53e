"""FastUoW App Configuration."""


import os

from fastuow.config import FastUoW
from tests.app.adapters.orm import init_mappers


class Config(FastUoW):
    """여기에 변경할 설정을 추가합니다.

    설정 가능한 모든 항목들은 `FastUoW` 클래스 정의를 참고하세요.
    """

    def __post_init__(self) -> None:
        self.init_hooks = [init_mappers]

    def get_db_url(self) -> str:
        """DB 접속 정보."""
        db_path = os.environ.get("TEST_DB_PATH")
        if db_path:
            return f"sqlite:///{db_path}"
        return super().get_db_url()
