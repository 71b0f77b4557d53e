"""도메인 모델."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Order:
    """고객이 발주하는 주문(Order) 모델입니다."""

    number: str
    customer: str
    total: int = 0
    id: Optional[int] = None  # pylint: disable=invalid-name
    """매핑된 DB가 할당한 고유 ID. 저장이 될 경우에만 값이 부여됩니다."""

    created: Optional[datetime] = None
    modified_time: Optional[datetime] = None


@dataclass
class Invoice:
    """주문(:class:`Order`)에 대한 청구서입니다.

    ``amount`` 는 음수일 수 없습니다 (DB 제약조건).
    """

    order_number: str
    """:attr:`Order.number` 를 가리키는 레퍼런스 입니다."""

    amount: int
    id: Optional[int] = None  # pylint: disable=invalid-name
    created: Optional[datetime] = None


@dataclass
class Setting:
    """이름을 기본키로 쓰는 설정 값. ``id`` 나 감사 필드가 없습니다."""

    name: str
    value: str
