"""엔티티 클래스별 디스크립터 레지스트리.

레포지터리는 엔티티에 기본키 필드(``id``)나 감사(audit) 필드(``created``,
``modified_time``)가 있는지를 호출할 때마다 검사하지 않습니다. 엔티티 클래스를
처음 등록할 때 SqlAlchemy 매퍼를 한 번 조사해서 :class:`EntityDescriptor` 로
만들어두고 재사용합니다.

Example: ::

    register_entity(Order, created_field="created_at")
    describe(Order).created_field  # "created_at"
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import Mapper

from fastuow.core.errors import InvalidArgumentError

KEY_FIELD = "id"
CREATED_FIELD = "created"
MODIFIED_FIELD = "modified_time"

_descriptors: dict[type, EntityDescriptor] = {}


@dataclass(frozen=True)
class EntityDescriptor:
    """엔티티 클래스가 제공하는 선택적 필드 정보.

    필드가 없으면 ``None`` 입니다.
    """

    entity_class: type
    mapper: Mapper
    key_field: Optional[str] = None
    """단일 기본키 컬럼의 속성 이름. 이 값이 있어야 조회 없는 삭제가 가능합니다."""

    created_field: Optional[str] = None
    modified_field: Optional[str] = None

    def new_stub(self, key: Any) -> Any:
        """기본키만 채워진 인스턴스를 생성자 호출 없이 만듭니다."""
        if not self.key_field:
            raise InvalidArgumentError(
                f"{self.entity_class.__name__} has no single key field"
            )
        instance = self.mapper.class_manager.new_instance()
        setattr(instance, self.key_field, key)
        return instance

    def stamp_created(self, entity: Any, now: datetime) -> None:
        if self.created_field:
            setattr(entity, self.created_field, now)

    def stamp_modified(self, entity: Any, now: datetime) -> None:
        if self.modified_field:
            setattr(entity, self.modified_field, now)


def _get_mapper(entity_class: type) -> Mapper:
    try:
        mapper = inspect(entity_class)
    except NoInspectionAvailable as ex:
        raise InvalidArgumentError(
            f"{entity_class!r} is not mapped by SqlAlchemy"
        ) from ex

    if not isinstance(mapper, Mapper):
        raise InvalidArgumentError(f"{entity_class!r} is not a mapped class")
    return mapper


def _column_attr(mapper: Mapper, name: Optional[str]) -> Optional[str]:
    if name and name in mapper.column_attrs:
        return name
    return None


def _single_key_attr(mapper: Mapper, name: Optional[str]) -> Optional[str]:
    # 기본키가 ``name`` 컬럼 하나일 때만 스텁 삭제가 안전합니다.
    if not _column_attr(mapper, name) or len(mapper.primary_key) != 1:
        return None
    if mapper.get_property_by_column(mapper.primary_key[0]).key != name:
        return None
    return name


def register_entity(
    entity_class: type,
    key_field: Optional[str] = KEY_FIELD,
    created_field: Optional[str] = CREATED_FIELD,
    modified_field: Optional[str] = MODIFIED_FIELD,
) -> EntityDescriptor:
    """엔티티 클래스를 등록하고 디스크립터를 리턴합니다.

    필드 이름을 ``None`` 으로 주면 해당 기능을 끕니다. 주어진 이름의 컬럼이
    매퍼에 없으면 조용히 ``None`` 으로 등록됩니다.

    Raises:
        :class:`InvalidArgumentError`: SqlAlchemy에 매핑되지 않은 클래스.
    """
    mapper = _get_mapper(entity_class)
    descriptor = EntityDescriptor(
        entity_class=entity_class,
        mapper=mapper,
        key_field=_single_key_attr(mapper, key_field),
        created_field=_column_attr(mapper, created_field),
        modified_field=_column_attr(mapper, modified_field),
    )
    _descriptors[entity_class] = descriptor
    return descriptor


def describe(entity_class: type) -> EntityDescriptor:
    """등록된 디스크립터를 리턴합니다. 처음 보는 클래스는 기본 이름으로 등록합니다."""
    descriptor = _descriptors.get(entity_class)
    if not descriptor:
        descriptor = register_entity(entity_class)
    return descriptor


def clear_registry() -> None:
    """등록된 모든 디스크립터를 지웁니다. ORM 매핑을 초기화할 때 같이 호출됩니다."""
    _descriptors.clear()
