from __future__ import annotations

import abc
import asyncio
import threading
from collections.abc import Iterable
from contextlib import AbstractContextManager, contextmanager
from typing import (
    Any,
    Callable,
    Generic,
    Iterator,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

from fastuow.core.errors import (
    ConcurrentCommitError,
    InvalidArgumentError,
    InvalidStateError,
)
from fastuow.logging import get_logger

logger = get_logger("fastuow.core")

E = TypeVar("E")
C = TypeVar("C", bound="AbstractStorageContext")


class AbstractTransactionBoundary(abc.ABC):
    """여러 컨텍스트가 함께 참여하는 트랜잭션 경계의 핸들입니다.

    경계를 시작한 쪽이 소유하며, 참여자들은
    :meth:`AbstractStorageContext.join_transaction` 으로 합류합니다.
    """

    @property
    @abc.abstractmethod
    def is_active(self) -> bool:
        """커밋이나 롤백이 되기 전이면 ``True``."""
        raise NotImplementedError

    @abc.abstractmethod
    def commit(self) -> None:
        """경계 안의 모든 변경을 커밋합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        """경계 안의 모든 변경을 롤백합니다. 이미 끝난 경계라면 아무것도 하지 않습니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:
        """경계가 잡고 있는 연결을 반환합니다."""
        raise NotImplementedError


class AbstractStorageContext(abc.ABC):
    """저장소 세션을 추상화한 클래스.

    스테이징된 변경(추가/수정/삭제) 집합을 소유하며, 트랜잭션 경계를 시작하거나
    다른 컨텍스트가 시작한 경계에 합류할 수 있습니다.
    """

    closed: bool = False
    boundary: Optional[AbstractTransactionBoundary] = None

    def check_alive(self) -> None:
        """닫힌 컨텍스트라면 :class:`InvalidStateError` 를 발생시킵니다."""
        if self.closed:
            raise InvalidStateError(f"{self!r} is already closed")

    @abc.abstractmethod
    def begin_transaction(self) -> AbstractTransactionBoundary:
        """새 트랜잭션 경계를 시작합니다. 컨텍스트 자신은 아직 합류하지 않습니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def check_joinable(self, boundary: AbstractTransactionBoundary) -> None:
        """``boundary`` 에 합류할 수 없으면 에러를 발생시킵니다.

        상태를 바꾸지 않으므로 실패해도 스테이징된 변경은 그대로 남습니다.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def join_transaction(self, boundary: AbstractTransactionBoundary) -> None:
        """``boundary`` 에 합류합니다. 이후의 저장은 경계 안에서만 flush 됩니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def leave_transaction(self, committed: bool) -> None:
        """경계에서 빠져나옵니다.

        Args:
            committed: 경계가 커밋되었는지 여부. ``False`` 이면 스테이징된
                상태를 모두 버립니다.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def save_changes(self) -> int:
        """스테이징된 변경을 저장하고 저장 직전에 스테이징되어 있던 엔티티 수를 리턴합니다.

        DB가 실제로 바꾼 row 수가 아닙니다. 예를 들어 없는 키의 스텁 삭제도
        1로 셉니다. 경계에 합류한 상태라면 flush만 하고 커밋은 경계에 맡깁니다.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self) -> None:
        """저장되지 않은 변경을 버립니다."""
        raise NotImplementedError

    def close(self) -> None:
        """컨텍스트를 닫습니다. 두 번째 호출부터는 아무것도 하지 않습니다."""
        if self.closed:
            return
        self._close()
        self.closed = True

    @abc.abstractmethod
    def _close(self) -> None:
        raise NotImplementedError


class AbstractRepository(Generic[E], abc.ABC):
    """Repository 패턴의 추상 인터페이스 입니다.

    쓰기 메소드는 변경을 컨텍스트에 스테이징만 합니다. 실제 저장은
    :meth:`AbstractUnitOfWork.save_changes` 가 담당하며, ``auto_save`` 가
    켜진 경우에만 호출마다 바로 저장합니다.
    """

    entity_class: Type[E]
    auto_save: bool = False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}[{self.entity_class.__name__}]"

    @abc.abstractmethod
    def query(self, *criteria: Any, **filter_by: Any) -> Iterable[E]:
        """조건에 맞는 엔티티를 변경 추적 없이(no-tracking) 조회합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def where(self, *criteria: Any, **filter_by: Any) -> Iterable[E]:
        """조건에 맞는 엔티티를 조회합니다. 결과는 컨텍스트가 추적합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def raw_query(
        self, sql: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> Iterable[E]:
        """바인딩 파라메터를 사용하는 raw SQL로 엔티티를 조회합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def find(self, *key_values: Any) -> Optional[E]:
        """기본키로 엔티티를 찾습니다. 못 찾을 경우 ``None`` 을 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def exists(self, *criteria: Any, **filter_by: Any) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def first_or_default(self, *criteria: Any, **filter_by: Any) -> Optional[E]:
        raise NotImplementedError

    def insert(self, *entities: Any) -> None:
        """엔티티 추가를 스테이징합니다. 엔티티나 엔티티의 iterable을 받습니다."""
        self._insert(list(self._iter_entities(entities)))
        self._auto_save()

    def update(self, *entities: Any) -> None:
        """엔티티 수정을 스테이징합니다. 엔티티나 엔티티의 iterable을 받습니다."""
        self._update(list(self._iter_entities(entities)))
        self._auto_save()

    def delete(self, *items: Any) -> None:
        """엔티티, 엔티티의 iterable, 또는 기본키 값으로 삭제를 스테이징합니다.

        엔티티가 아닌 값은 기본키로 취급합니다. 복합키는 ``tuple`` 로 넘깁니다.
        """
        entities: list[E] = []
        keys: list[Any] = []
        self._split_delete_items(items, entities, keys)

        if entities:
            self._delete(entities)
        for key in keys:
            self._delete_by_key(key)
        self._auto_save()

    def delete_by_key(self, key: Any) -> None:
        """기본키 값으로 삭제를 스테이징합니다."""
        self._delete_by_key(key)
        self._auto_save()

    def _iter_entities(self, items: Iterable[Any]) -> Iterator[E]:
        for item in items:
            if isinstance(item, self.entity_class):
                yield item
            elif isinstance(item, Iterable) and not isinstance(item, (str, bytes)):
                yield from self._iter_entities(item)
            else:
                raise InvalidArgumentError(
                    f"{item!r} is not an instance of {self.entity_class.__name__}"
                )

    def _split_delete_items(
        self, items: Iterable[Any], entities: list[E], keys: list[Any]
    ) -> None:
        for item in items:
            if isinstance(item, self.entity_class):
                entities.append(item)
            elif isinstance(item, Iterable) and not isinstance(
                item, (str, bytes, tuple)
            ):
                self._split_delete_items(item, entities, keys)
            else:
                keys.append(item)

    def _auto_save(self) -> None:
        if self.auto_save:
            self._save()

    @abc.abstractmethod
    def _insert(self, entities: list[E]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _update(self, entities: list[E]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _delete(self, entities: list[E]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _delete_by_key(self, key: Any) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def _save(self) -> None:
        """``auto_save`` 모드에서 호출마다 변경을 저장합니다."""
        raise NotImplementedError


RepoMakerFunc = Callable[[AbstractStorageContext], AbstractRepository]
RepoMakerDict = dict[Type[Any], RepoMakerFunc]
EntityReposMap = dict[Type[Any], AbstractRepository]


@contextmanager
def exclusive(participants: Sequence[AbstractUnitOfWork]) -> Iterator[None]:
    """모든 참여자의 커밋 락을 획득합니다.

    이미 다른 분산 커밋이 락을 잡고 있다면 기다리지 않고
    :class:`ConcurrentCommitError` 를 발생시킵니다.
    """
    acquired: list[AbstractUnitOfWork] = []
    try:
        for uow in participants:
            if not uow.commit_lock.acquire(blocking=False):
                raise ConcurrentCommitError(
                    f"another distributed commit is in progress for {uow!r}"
                )
            acquired.append(uow)
        yield
    finally:
        for uow in reversed(acquired):
            uow.commit_lock.release()


def _retrieve_exception(task: asyncio.Future) -> None:
    # 호출한 태스크가 취소되어 아무도 결과를 기다리지 않아도 예외를 조회합니다.
    # 롤백은 이미 경고 로그로 남습니다.
    if not task.cancelled():
        task.exception()


class AbstractUnitOfWork(AbstractContextManager["AbstractUnitOfWork"]):
    """UnitOfWork 패턴의 추상 인터페이스입니다.

    UnitOfWork(UoW)는 하나의 저장소 컨텍스트를 소유하고, 엔티티 클래스별
    레포지터리를 한 번만 만들어 캐시합니다. 여러 UoW의 변경을 하나의
    트랜잭션 경계로 묶어 저장하는 :meth:`save_changes_async` 를 제공합니다.
    """

    context: AbstractStorageContext
    repos: EntityReposMap

    def __init__(
        self,
        context: Optional[AbstractStorageContext],
        repo_maker: Optional[RepoMakerDict] = None,
    ) -> None:
        if context is None:
            raise InvalidArgumentError("context must not be None")

        self.context = context
        self.repos = {}
        self.repo_maker = repo_maker or {}
        self.commit_lock = threading.Lock()
        self.disposed = False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}[{self.context!r}]"

    def __enter__(self) -> AbstractUnitOfWork:
        """``with`` 블록에 진입했을때 실행되는 메소드입니다."""
        return self

    def __exit__(self, *args: Any) -> None:
        """``with`` 블록에서 빠져나갈 때 UoW를 dispose 합니다.

        저장되지 않은 변경은 컨텍스트와 함께 버려집니다.
        """
        self.dispose()

    async def __aenter__(self) -> AbstractUnitOfWork:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.dispose()

    def __getitem__(self, key: Type[E]) -> AbstractRepository[E]:
        return self.repository(key)

    def check_alive(self) -> None:
        if self.disposed:
            raise InvalidStateError(f"{self!r} is already disposed")

    def get_context(self, context_type: Type[C]) -> Optional[C]:
        """컨텍스트를 ``context_type`` 으로 좁혀 리턴합니다.

        호환되지 않는 타입이면 에러 대신 ``None`` 을 리턴합니다.
        """
        if isinstance(self.context, context_type):
            return self.context
        return None

    def repository(self, entity_class: Type[E]) -> AbstractRepository[E]:
        """``entity_class`` 의 레포지터리를 리턴합니다.

        처음 요청될 때 만들어지며, UoW가 살아있는 동안 같은 객체를 재사용합니다.
        ``repo_maker`` 에 등록된 팩토리가 있으면 그것을 사용합니다.
        """
        self.check_alive()
        if entity_class not in self.repos:
            make = self.repo_maker.get(entity_class)
            self.repos[entity_class] = (
                make(self.context) if make else self._make_repository(entity_class)
            )
        return self.repos[entity_class]

    def save_changes(self) -> int:
        """스테이징된 모든 변경을 저장하고 기록된 엔티티 수를 리턴합니다."""
        self.check_alive()
        return self.context.save_changes()

    def commit(self) -> int:
        """:meth:`save_changes` 와 같습니다."""
        return self.save_changes()

    def rollback(self) -> None:
        """저장되지 않은 변경을 버립니다."""
        self.check_alive()
        self.context.rollback()

    async def save_changes_async(self, *peers: AbstractUnitOfWork) -> int:
        """변경을 비동기로 저장합니다.

        ``peers`` 가 없으면 이 UoW의 변경만 저장합니다. ``peers`` 가 주어지면
        이 UoW의 컨텍스트에서 트랜잭션 경계를 시작하고, 모든 참여자를 경계에
        합류시킨 뒤 ``peers`` 를 주어진 순서대로 저장하고 마지막에 자신을
        저장합니다. 모두 성공하면 경계를 커밋하고 전체 엔티티 수를 리턴합니다.

        하나라도 실패하면 경계 전체를 롤백하고, 모든 참여자의 스테이징된
        상태를 버린 뒤, 원래 예외를 그대로 다시 발생시킵니다.

        한번 시작된 분산 커밋은 호출한 태스크가 취소되어도 커밋이나 롤백까지
        끝까지 실행됩니다.
        """
        self.check_alive()
        if not peers:
            return await asyncio.to_thread(self.save_changes)

        participants = [*peers, self]
        if len({id(uow) for uow in participants}) != len(participants):
            raise InvalidArgumentError(
                "each unit of work can participate only once in a commit"
            )

        task = asyncio.ensure_future(self._save_changes_with(participants))
        task.add_done_callback(_retrieve_exception)
        return await asyncio.shield(task)

    async def _save_changes_with(self, participants: list[AbstractUnitOfWork]) -> int:
        *peers, owner = participants
        count = 0

        with exclusive(participants):
            for uow in participants:
                uow.check_alive()

            boundary = owner.context.begin_transaction()
            joined: list[AbstractUnitOfWork] = []
            try:
                # 검사가 실패하면 아무도 합류하지 않았으므로 버릴 상태가 없습니다.
                for uow in participants:
                    uow.context.check_joinable(boundary)

                # 합류를 먼저 끝내야 flush 도중 다른 연결이 반환되지 않습니다.
                for uow in participants:
                    uow.context.join_transaction(boundary)
                    joined.append(uow)

                for peer in peers:
                    count += await peer.save_changes_async()
                count += await asyncio.to_thread(owner.save_changes)

                boundary.commit()
            except BaseException:
                logger.warning(
                    "rollback distributed commit over %d units of work",
                    len(participants),
                )
                try:
                    boundary.rollback()
                finally:
                    for uow in joined:
                        uow.context.leave_transaction(committed=False)
                raise
            else:
                for uow in joined:
                    uow.context.leave_transaction(committed=True)
            finally:
                boundary.close()

        logger.debug(
            "committed %d entities over %d units of work", count, len(participants)
        )
        return count

    def dispose(self) -> None:
        """레포지터리 캐시를 비우고 컨텍스트를 닫습니다.

        여러 번 호출해도 안전하며, 두 번째 호출부터는 아무것도 하지 않습니다.
        """
        if self.disposed:
            return

        self.repos.clear()
        self.context.close()
        self.disposed = True
        logger.debug("disposed %r", self)

    def close(self) -> None:
        """:meth:`dispose` 와 같습니다."""
        self.dispose()

    @abc.abstractmethod
    def execute_command(
        self, sql: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any
    ) -> int:
        """쿼리가 아닌 SQL 문을 실행하고 영향받은 row 수를 리턴합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def custom_query(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        result_type: Optional[Callable[..., Any]] = None,
        **kwargs: Any,
    ) -> Iterable[Any]:
        """raw SQL 결과를 임의의 형태로 매핑해 조회합니다."""
        raise NotImplementedError

    @abc.abstractmethod
    def _make_repository(self, entity_class: Type[E]) -> AbstractRepository[E]:
        raise NotImplementedError
