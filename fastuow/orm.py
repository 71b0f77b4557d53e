"""ORM 어댑터 모듈"""
from __future__ import annotations

from typing import Any, Callable, Optional, Type, Union

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import clear_mappers as _clear_mappers
from sqlalchemy.orm import registry
from sqlalchemy.pool import Pool

from fastuow.logging import get_logger
from fastuow.registry import clear_registry

MapperHook = Callable[[registry], Any]
"""``registry.map_imperatively`` 로 도메인 객체를 매핑하는 사용자 함수 타입."""

metadata: Optional[MetaData] = None
mapper_registry: Optional[registry] = None

logger = get_logger("fastuow.orm")


def start_mappers(
    use_exist: bool = True, init_hooks: Optional[list[MapperHook]] = None
) -> MetaData:
    """도메인 객체들을 SqlAlchemy ORM 매퍼에 등록합니다.

    이미 매핑이 끝났고 ``use_exist`` 가 ``True`` 이면 기존 ``MetaData`` 를
    그대로 리턴합니다.
    """
    global metadata, mapper_registry  # pylint: disable=global-statement,invalid-name
    if use_exist and metadata:
        return metadata

    metadata = MetaData()
    mapper_registry = registry(metadata=metadata)

    # 사용자 매핑 함수 추가.
    if init_hooks:
        for hook in init_hooks:
            hook(mapper_registry)

    return metadata


def clear_mappers() -> None:
    """ORM 매핑과 엔티티 디스크립터를 초기화 합니다."""
    global metadata, mapper_registry  # pylint: disable=global-statement,invalid-name
    _clear_mappers()
    clear_registry()
    metadata = None
    mapper_registry = None


def init_engine(
    meta: MetaData,
    url: str,
    connect_args: Optional[dict[str, Any]] = None,
    poolclass: Optional[Type[Pool]] = None,
    show_log: Union[bool, str] = False,
    isolation_level: Optional[str] = None,
    drop_all: bool = False,
) -> Engine:
    """ORM Engine을 초기화 하고 ``meta`` 의 테이블들을 생성합니다.

    Args:
        show_log: SqlAlchemy ``echo`` 옵션. ``"debug"`` 이면 결과 row까지 출력합니다.
        drop_all: ``True`` 이면 테이블을 모두 지우고 다시 만듭니다.
    """
    kwargs: dict[str, Any] = {}
    if poolclass:
        kwargs["poolclass"] = poolclass
    if isolation_level:
        kwargs["isolation_level"] = isolation_level

    engine = create_engine(
        url,
        connect_args=connect_args or {},
        echo=show_log,
        **kwargs,
    )

    if drop_all:
        meta.drop_all(engine)

    meta.create_all(engine)
    logger.debug("engine initialized: %r (%d tables)", engine.url, len(meta.tables))

    return engine
