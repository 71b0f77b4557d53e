"""UnitOfWork 패턴 모듈.

SqlAlchemy를 이용한 기본 구현체를 제공합니다.

Example: ::

    orders = SqlAlchemyUnitOfWork(SqlAlchemyStorageContext(engine, "orders"))
    invoices = SqlAlchemyUnitOfWork(SqlAlchemyStorageContext(engine, "invoices"))

    orders.repository(Order).insert(order)
    invoices.repository(Invoice).insert(invoice)

    # invoices 를 먼저 flush 하고 orders 를 flush 한 뒤 한번에 커밋합니다.
    await orders.save_changes_async(invoices)
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Type, TypeVar, cast

from sqlalchemy.engine import Engine

from fastuow.context import SqlAlchemyStorageContext
from fastuow.core import AbstractUnitOfWork, RepoMakerDict
from fastuow.logging import get_logger
from fastuow.repo import LazySequence, SqlAlchemyRepository

E = TypeVar("E")

logger = get_logger("fastuow.uow")


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """``SqlAlchemy`` ORM을 이용한 UnitOfWork 패턴 구현입니다."""

    context: SqlAlchemyStorageContext

    def __init__(
        self,
        context: Optional[SqlAlchemyStorageContext],
        repo_maker: Optional[RepoMakerDict] = None,
        auto_save: bool = False,
    ) -> None:
        """``SqlAlchemy`` 기반의 UoW를 초기화합니다.

        Args:
            context: UoW가 소유할 컨텍스트. ``None`` 이면
                :class:`~fastuow.core.InvalidArgumentError` 가 발생합니다.
            repo_maker: 엔티티 클래스별 레포지터리 팩토리.
            auto_save: 기본 레포지터리들을 쓰기 호출마다 저장하는 모드로 만듭니다.
        """
        super().__init__(context, repo_maker)
        self.auto_save = auto_save

    @classmethod
    def from_engine(cls, engine: Engine, name: str = "", **kwargs: Any):
        """``engine`` 에 연결된 새 컨텍스트를 가진 UoW를 만듭니다."""
        return cls(SqlAlchemyStorageContext(engine, name), **kwargs)

    def repository(self, entity_class: Type[E]) -> SqlAlchemyRepository[E]:
        return cast(SqlAlchemyRepository[E], super().repository(entity_class))

    def _make_repository(self, entity_class: Type[E]) -> SqlAlchemyRepository[E]:
        return SqlAlchemyRepository(entity_class, self.context, auto_save=self.auto_save)

    def execute_command(
        self, sql: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> int:
        self.check_alive()
        logger.debug("execute command on %r: %s", self.context, sql)
        return self.context.execute(sql, {**(params or {}), **kwargs})

    def custom_query(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        result_type: Optional[Callable[..., Any]] = None,
        **kwargs: Any,
    ) -> LazySequence[Any]:
        """raw SQL 결과를 ``result_type(**row)`` 로 매핑합니다.

        ``result_type`` 이 없으면 SqlAlchemy ``Row`` 를 그대로 리턴합니다.

        Example: ::

            @dataclass
            class Total:
                customer: str
                total: int

            uow.custom_query(
                "SELECT customer, SUM(total) AS total FROM orders GROUP BY customer",
                result_type=Total,
            )
        """
        bound = {**(params or {}), **kwargs}

        def fetch() -> list[Any]:
            self.check_alive()
            rows = self.context.fetch_rows(sql, bound)
            if result_type is None:
                return rows
            return [result_type(**row._mapping) for row in rows]

        return LazySequence(fetch)
