"""레포지터리 패턴 구현."""
from __future__ import annotations

from datetime import datetime
from functools import partial
from typing import Any, Callable, Generic, Iterator, Mapping, Optional, Type, TypeVar

from sqlalchemy import func, inspect, select, text
from sqlalchemy.orm import make_transient_to_detached
from sqlalchemy.sql import Select

from fastuow.context import SqlAlchemyStorageContext
from fastuow.core import AbstractRepository, InvalidArgumentError
from fastuow.registry import EntityDescriptor, describe

T = TypeVar("T")
E = TypeVar("E")

StatementRunner = Callable[[Select], list[Any]]


class LazySequence(Generic[T]):
    """지연 평가되는 결과 시퀀스.

    순회할 때마다 쿼리를 다시 실행하므로 여러 번 순회할 수 있습니다.
    """

    def __init__(self, fetch: Callable[[], list[T]]):
        self._fetch = fetch

    def __iter__(self) -> Iterator[T]:
        return iter(self._fetch())

    def all(self) -> list[T]:
        return self._fetch()

    def first(self) -> Optional[T]:
        return next(iter(self), None)


class QueryView(LazySequence[T]):
    """``select`` 문을 감싼 지연 쿼리입니다.

    ``filter``, ``order_by`` 등은 쿼리를 실행하지 않고 새 뷰를 리턴합니다.

    Example: ::

        view = repo.query(Order.total > 100).order_by(Order.id)
        for order in view:
            ...
    """

    def __init__(self, run: StatementRunner, statement: Select):
        super().__init__(partial(run, statement))
        self._run = run
        self.statement = statement

    def _derive(self, statement: Select) -> QueryView[T]:
        return QueryView(self._run, statement)

    def filter(self, *criteria: Any, **filter_by: Any) -> QueryView[T]:
        statement = self.statement.where(*criteria) if criteria else self.statement
        if filter_by:
            statement = statement.filter_by(**filter_by)
        return self._derive(statement)

    def order_by(self, *clauses: Any) -> QueryView[T]:
        return self._derive(self.statement.order_by(*clauses))

    def limit(self, limit: int) -> QueryView[T]:
        return self._derive(self.statement.limit(limit))

    def offset(self, offset: int) -> QueryView[T]:
        return self._derive(self.statement.offset(offset))

    def first(self) -> Optional[T]:
        return next(iter(self._run(self.statement.limit(1))), None)

    def count(self) -> int:
        [count] = self._run(select(func.count()).select_from(self.statement.subquery()))
        return count

    def exists(self) -> bool:
        [found] = self._run(select(self.statement.exists()))
        return bool(found)


class SqlAlchemyRepository(AbstractRepository[E]):
    """SqlAlchemy ORM을 저장소로 하는 :class:`AbstractRepository` 구현입니다.

    조건(``criteria``)은 ``Order.total > 100`` 같은 SqlAlchemy 표현식이고,
    키워드 인자는 ``filter_by`` 로 전달됩니다.
    """

    def __init__(
        self,
        entity_class: Type[E],
        context: SqlAlchemyStorageContext,
        auto_save: bool = False,
    ):
        """임의의 엔티티 클래스 E 를 받아 E에대한 Repostiory를 초기화합니다.

        Args:
            auto_save: ``True`` 이면 쓰기 메소드를 호출할 때마다 바로 저장합니다.
        """
        if context is None:
            raise InvalidArgumentError("context must not be None")

        self.entity_class = entity_class
        self.context = context
        self.auto_save = auto_save
        self.descriptor: EntityDescriptor = describe(entity_class)

    def _run_tracked(self, statement: Select) -> list[Any]:
        self.context.check_alive()
        return self.context.session.scalars(statement).all()

    def _run_readonly(self, statement: Select) -> list[Any]:
        # 세션이 닫히면서 결과 객체는 모두 detached 상태가 됩니다.
        with self.context.readonly_session() as session:
            return session.scalars(statement).all()

    def _select(self, criteria: tuple[Any, ...], filter_by: dict[str, Any]) -> Select:
        statement = select(self.entity_class)
        if criteria:
            statement = statement.where(*criteria)
        if filter_by:
            statement = statement.filter_by(**filter_by)
        return statement

    def query(self, *criteria: Any, **filter_by: Any) -> QueryView[E]:
        return QueryView(self._run_readonly, self._select(criteria, filter_by))

    def where(self, *criteria: Any, **filter_by: Any) -> QueryView[E]:
        return QueryView(self._run_tracked, self._select(criteria, filter_by))

    def raw_query(
        self, sql: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> LazySequence[E]:
        """``:name`` 바인딩 파라메터를 쓰는 raw SQL로 엔티티를 조회합니다.

        Example: ::

            repo.raw_query("SELECT * FROM orders WHERE customer = :name", name="kim")
        """
        statement = select(self.entity_class).from_statement(text(sql))
        bound = {**(params or {}), **kwargs}

        def fetch() -> list[E]:
            self.context.check_alive()
            return self.context.session.scalars(statement, bound).all()

        return LazySequence(fetch)

    def find(self, *key_values: Any) -> Optional[E]:
        if not key_values:
            raise InvalidArgumentError("at least one key value is required")

        self.context.check_alive()
        key = key_values[0] if len(key_values) == 1 else tuple(key_values)
        return self.context.session.get(self.entity_class, key)

    def exists(self, *criteria: Any, **filter_by: Any) -> bool:
        return self.query(*criteria, **filter_by).exists()

    def first_or_default(self, *criteria: Any, **filter_by: Any) -> Optional[E]:
        return self.where(*criteria, **filter_by).first()

    def _insert(self, entities: list[E]) -> None:
        self.context.check_alive()
        now = datetime.now()
        for entity in entities:
            self.descriptor.stamp_created(entity, now)
        self.context.session.add_all(entities)

    def _update(self, entities: list[E]) -> None:
        self.context.check_alive()
        session = self.context.session
        now = datetime.now()
        for entity in entities:
            self.descriptor.stamp_modified(entity, now)
            if entity in session:
                continue

            key = inspect(entity).key
            if key is None or key in session.identity_map:
                # 새 객체이거나 같은 키의 객체를 이미 추적중이면 값을 병합합니다.
                session.merge(entity)
            else:
                session.add(entity)

    def _delete(self, entities: list[E]) -> None:
        self.context.check_alive()
        session = self.context.session
        for entity in entities:
            key = inspect(entity).key
            if key is None:
                pk = self.descriptor.mapper.primary_key_from_instance(entity)
                if any(value is None for value in pk):
                    raise InvalidArgumentError(f"{entity!r} has no primary key")
                self._delete_by_key(pk[0] if len(pk) == 1 else tuple(pk))
            else:
                session.delete(session.identity_map.get(key, entity))

    def _delete_by_key(self, key: Any) -> None:
        self.context.check_alive()
        session = self.context.session

        if not self.descriptor.key_field:
            entity = session.get(self.entity_class, key)
            if entity is not None:
                session.delete(entity)
            return

        # 조회 없이 키만 채운 스텁 객체를 삭제 대상으로 표시합니다.
        identity = self.descriptor.mapper.identity_key_from_primary_key([key])
        entity = session.identity_map.get(identity)
        if entity is None:
            entity = self.descriptor.new_stub(key)
            make_transient_to_detached(entity)
            session.add(entity)
        session.delete(entity)

    def _save(self) -> None:
        self.context.save_changes()
