# pylint: disable=redefined-outer-name, protected-access
"""pytest 에서 사용될 전역 Fixture들을 정의합니다."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Generator

import pytest
from sqlalchemy import MetaData
from sqlalchemy.engine import Engine

from fastuow.orm import clear_mappers, init_engine, start_mappers
from fastuow.uow import SqlAlchemyUnitOfWork
from tests.app.adapters.orm import init_mappers

# types

UoWMaker = Callable[..., SqlAlchemyUnitOfWork]
""":func:`make_uow` 픽스처 타입."""


@pytest.fixture(scope="session")
def metadata() -> MetaData:
    """테스트 도메인 모델을 한 번만 매핑하고 ``MetaData`` 를 리턴합니다."""
    clear_mappers()
    return start_mappers(use_exist=False, init_hooks=[init_mappers])


@pytest.fixture
def engine(metadata: MetaData, tmp_path: Path) -> Generator[Engine, None, None]:
    """테스트마다 새로 만드는 파일 기반 SQLite 엔진.

    비동기 저장은 워커 스레드에서 연결을 사용하므로 ``check_same_thread`` 를 끕니다.
    """
    engine = init_engine(
        metadata,
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def make_uow(engine: Engine) -> Generator[UoWMaker, None, None]:
    """``engine`` 에 연결된 새 UoW를 만드는 팩토리 픽스처.

    만들어진 UoW는 테스트가 끝나면 모두 dispose 됩니다.
    """
    created: list[SqlAlchemyUnitOfWork] = []

    def make(name: str = "", **kwargs) -> SqlAlchemyUnitOfWork:
        uow = SqlAlchemyUnitOfWork.from_engine(engine, name, **kwargs)
        created.append(uow)
        return uow

    yield make

    for uow in created:
        uow.dispose()


@pytest.fixture
def uow(make_uow: UoWMaker) -> SqlAlchemyUnitOfWork:
    return make_uow("default")
