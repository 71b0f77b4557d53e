"""SqlAlchemy 기반 저장소 컨텍스트 모듈.

하나의 :class:`SqlAlchemyStorageContext` 는 하나의 SqlAlchemy ``Session`` 을
소유합니다. 세션은 ``autoflush`` 가 꺼져 있으므로 레포지터리가 스테이징한
변경은 :meth:`~SqlAlchemyStorageContext.save_changes` 전까지 메모리에만 있습니다.

여러 컨텍스트가 하나의 트랜잭션으로 저장해야 할 때는 한 컨텍스트가
:class:`SqlAlchemyTransactionBoundary` 를 만들고, 각 컨텍스트의 세션을 경계의
``Connection`` 에 다시 바인딩합니다 (SqlAlchemy의 "외부 트랜잭션에 세션 합류"
패턴). 경계에 합류한 세션은 롤백만 경계에 전파하고 커밋은 경계에 맡깁니다.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.orm import Session

from fastuow.core import (
    AbstractStorageContext,
    AbstractTransactionBoundary,
    InvalidArgumentError,
    InvalidStateError,
)
from fastuow.logging import get_logger

logger = get_logger("fastuow.context")


class SqlAlchemyTransactionBoundary(AbstractTransactionBoundary):
    """``Connection`` 하나와 그 위의 루트 트랜잭션으로 이루어진 경계."""

    def __init__(self, engine: Engine):
        self.connection: Connection = engine.connect()
        self.transaction = self.connection.begin()

    def __repr__(self) -> str:
        return f"SqlAlchemyTransactionBoundary[{self.connection.engine.url!r}]"

    @property
    def is_active(self) -> bool:
        return self.transaction.is_active

    def commit(self) -> None:
        self.transaction.commit()
        logger.debug("commit %r", self)

    def rollback(self) -> None:
        # 실패한 flush가 이미 경계를 롤백했을 수 있습니다.
        if self.transaction.is_active:
            self.transaction.rollback()
        logger.debug("rollback %r", self)

    def close(self) -> None:
        self.connection.close()


class SqlAlchemyStorageContext(AbstractStorageContext):
    """SqlAlchemy ``Session`` 을 감싼 저장소 컨텍스트입니다."""

    boundary: Optional[SqlAlchemyTransactionBoundary]

    def __init__(self, bind: Engine, name: str = ""):
        """``bind`` 엔진에 연결되는 컨텍스트를 초기화합니다.

        Args:
            bind: SqlAlchemy ``Engine``.
            name: 로그와 ``repr`` 에 쓰일 이름. 기본값은 DB 이름.
        """
        if bind is None:
            raise InvalidArgumentError("bind must not be None")

        self.bind = bind
        self.name = name or str(bind.url.database or bind.url.drivername)
        self.session = Session(
            bind=bind,
            autoflush=False,
            expire_on_commit=False,
            join_transaction_mode="rollback_only",
        )
        self.boundary = None
        self.closed = False

    def __repr__(self) -> str:
        return f"SqlAlchemyStorageContext[{self.name}]"

    @property
    def connectable(self) -> Union[Engine, Connection]:
        """SQL을 실행할 대상. 경계에 합류한 동안에는 경계의 연결입니다."""
        return self.boundary.connection if self.boundary else self.bind

    def readonly_session(self) -> Session:
        """변경 추적이 필요 없는 조회에 사용할 임시 세션을 만듭니다.

        호출한 쪽에서 닫아야 합니다 (``with`` 블록 사용).
        """
        self.check_alive()
        return Session(
            bind=self.connectable,
            autoflush=False,
            expire_on_commit=False,
            join_transaction_mode="rollback_only",
        )

    def execute(self, sql: str, params: Mapping[str, Any]) -> int:
        """쿼리가 아닌 SQL 문을 바로 실행하고 영향받은 row 수를 리턴합니다.

        경계에 합류한 동안에는 경계 안에서 실행되고, 아니면 자체 트랜잭션으로
        즉시 커밋됩니다.
        """
        self.check_alive()
        if self.boundary is not None:
            return self.boundary.connection.execute(text(sql), dict(params)).rowcount

        with self.bind.begin() as conn:
            return conn.execute(text(sql), dict(params)).rowcount

    def fetch_rows(self, sql: str, params: Mapping[str, Any]) -> list[Row]:
        """raw SQL 쿼리를 실행하고 모든 row를 리턴합니다."""
        self.check_alive()
        if self.boundary is not None:
            return list(self.boundary.connection.execute(text(sql), dict(params)))

        with self.bind.connect() as conn:
            return list(conn.execute(text(sql), dict(params)))

    def begin_transaction(self) -> SqlAlchemyTransactionBoundary:
        self.check_alive()
        boundary = SqlAlchemyTransactionBoundary(self.bind)
        logger.debug("begin %r from %r", boundary, self)
        return boundary

    def check_joinable(self, boundary: AbstractTransactionBoundary) -> None:
        self.check_alive()
        if not isinstance(boundary, SqlAlchemyTransactionBoundary):
            raise InvalidArgumentError(f"{self!r} cannot join {boundary!r}")
        if self.boundary is not None:
            raise InvalidStateError(f"{self!r} already joined {self.boundary!r}")
        if boundary.connection.engine.url != self.bind.url:
            raise InvalidArgumentError(
                f"{self!r} cannot join {boundary!r} on a different database"
            )

    def join_transaction(self, boundary: AbstractTransactionBoundary) -> None:
        self.check_joinable(boundary)
        assert isinstance(boundary, SqlAlchemyTransactionBoundary)

        self._release_connection()
        self.session.bind = boundary.connection
        self.boundary = boundary
        logger.debug("%r joined %r", self, boundary)

    def leave_transaction(self, committed: bool) -> None:
        if self.boundary is None:
            return

        transaction = self.session.get_transaction()
        if committed:
            if transaction is not None:
                # 경계 트랜잭션은 커밋하지 않고 세션 상태만 확정합니다.
                self.session.commit()
        else:
            if transaction is not None:
                transaction.close()
            self.session.expunge_all()

        self.session.bind = self.bind
        self.boundary = None

    def save_changes(self) -> int:
        self.check_alive()
        count = self._pending_count()

        if self.boundary is not None:
            self.session.flush()
            return count

        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        return count

    def rollback(self) -> None:
        self.check_alive()
        self.session.rollback()
        self.session.expunge_all()

    def _release_connection(self) -> None:
        # 조회만 한 트랜잭션을 닫습니다. autoflush가 꺼져 있어서
        # 스테이징된 변경은 아직 메모리에만 있고 그대로 유지됩니다.
        transaction = self.session.get_transaction()
        if transaction is not None:
            transaction.close()

    def _pending_count(self) -> int:
        session = self.session
        dirty = sum(1 for obj in session.dirty if session.is_modified(obj))
        return len(session.new) + dirty + len(session.deleted)

    def _close(self) -> None:
        if self.boundary is not None:
            self.leave_transaction(committed=False)
        self.session.close()
        logger.debug("closed %r", self)
