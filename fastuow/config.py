"""기본 환경 설정."""

from __future__ import annotations

import importlib
import os
import sys
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Type, cast

from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import Pool, StaticPool

from fastuow.context import SqlAlchemyStorageContext
from fastuow.orm import MapperHook, init_engine, start_mappers
from fastuow.uow import SqlAlchemyUnitOfWork

DB_URL_ENV = "FASTUOW_DB_URL"
"""DB URL을 덮어쓰는 OS 환경변수 이름."""


@dataclass
class FastUoWSetupConfig:
    name: Optional[str] = None
    db_url: Optional[str] = None
    show_log: Optional[str] = None
    config_module: Optional[str] = None


def load_setupcfg(path: Path) -> Optional[FastUoWSetupConfig]:
    if (path / "setup.cfg").exists():
        # 현재 경로에 "setup.cfg" 파일이 있다면 [fastuow] 섹션에서
        # name, db_url 등의 정보를 읽습니다.
        config = ConfigParser()
        config.read(path / "setup.cfg")
        if "fastuow" in config:
            return FastUoWSetupConfig(**config["fastuow"])
    return None


@dataclass
class FastUoW:
    """FastUoW 설정.

    DB 접속 정보를 바꾸려면 이 클래스를 상속하고 :meth:`get_db_url` 등을
    오버라이드합니다.
    """

    name: str
    db_url: Optional[str] = None
    show_log: bool = False
    init_hooks: list[MapperHook] = field(default_factory=list)
    """ORM 매핑 함수 목록. :func:`fastuow.orm.start_mappers` 에 전달됩니다."""

    _engine: Optional[Engine] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        """생성 직후 호출됩니다. 상속한 설정 클래스에서 기본값을 채울 때 오버라이드합니다."""

    @staticmethod
    def load_from_config(path: Path = Path(".")) -> FastUoW:
        """``setup.cfg`` 의 ``[fastuow]`` 섹션을 읽어 설정을 만듭니다.

        ``config_module`` 이 지정되어 있으면 해당 모듈의 ``Config`` 클래스를
        설정 클래스로 사용합니다.
        """
        cfg = load_setupcfg(path) or FastUoWSetupConfig()
        kwargs: dict[str, Any] = dict(
            name=cfg.name or path.absolute().name,
            db_url=cfg.db_url,
            show_log=(cfg.show_log or "").lower() in ("1", "true", "yes", "on"),
        )

        if cfg.config_module:
            abs_path = str(path.absolute())
            if abs_path not in sys.path:
                sys.path.insert(0, abs_path)

            conf_module = importlib.import_module(cfg.config_module)
            config = cast(Type[FastUoW], getattr(conf_module, "Config"))
            return config(**kwargs)

        return FastUoW(**kwargs)

    def get_db_url(self) -> str:
        """SqlAlchemy 에서 사용 가능한 형식의 DB URL을 리턴합니다.

        ``FASTUOW_DB_URL`` 환경변수, ``db_url`` 설정, ``sqlite://`` 순으로 사용합니다.
        """
        return os.environ.get(DB_URL_ENV) or self.db_url or "sqlite://"

    def get_db_connect_args(self) -> dict[str, Any]:
        """Get db connection arguments for SQLAlchemy's engine creation.

        SQLite의 경우 비동기 저장이 워커 스레드에서 연결을 사용하므로
        ``{'check_same_thread': False}`` 를 리턴합니다.
        """
        if make_url(self.get_db_url()).get_backend_name() == "sqlite":
            return {"check_same_thread": False}
        return {}

    def get_db_poolclass(self) -> Optional[Type[Pool]]:
        """Get db poolclass arguemnt for SQLAlchemy's engine creation.

        메모리 SQLite DB는 모든 연결이 같은 DB를 보도록 ``StaticPool`` 을 사용합니다.
        """
        url = make_url(self.get_db_url())
        if url.get_backend_name() == "sqlite" and url.database in (None, "", ":memory:"):
            return StaticPool
        return None

    @property
    def engine(self) -> Engine:
        """설정으로 만든 엔진. 처음 접근할 때 매핑과 테이블 생성을 수행합니다."""
        if not self._engine:
            self._engine = init_engine(
                start_mappers(init_hooks=self.init_hooks),
                self.get_db_url(),
                connect_args=self.get_db_connect_args(),
                poolclass=self.get_db_poolclass(),
                show_log=self.show_log,
            )
        return self._engine

    def uow(self, name: str = "", **kwargs: Any) -> SqlAlchemyUnitOfWork:
        """새 컨텍스트를 가진 UoW를 만듭니다."""
        return SqlAlchemyUnitOfWork(
            SqlAlchemyStorageContext(self.engine, name or self.name), **kwargs
        )
