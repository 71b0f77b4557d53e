"""FastUoW - SqlAlchemy 기반의 Repository / UnitOfWork 라이브러리."""
from fastuow.config import FastUoW
from fastuow.context import SqlAlchemyStorageContext, SqlAlchemyTransactionBoundary
from fastuow.core import (
    AbstractRepository,
    AbstractStorageContext,
    AbstractTransactionBoundary,
    AbstractUnitOfWork,
    ConcurrentCommitError,
    FastUoWError,
    InvalidArgumentError,
    InvalidStateError,
)
from fastuow.registry import EntityDescriptor, describe, register_entity
from fastuow.repo import LazySequence, QueryView, SqlAlchemyRepository
from fastuow.uow import SqlAlchemyUnitOfWork

__all__ = [
    "AbstractRepository",
    "AbstractStorageContext",
    "AbstractTransactionBoundary",
    "AbstractUnitOfWork",
    "ConcurrentCommitError",
    "EntityDescriptor",
    "FastUoW",
    "FastUoWError",
    "InvalidArgumentError",
    "InvalidStateError",
    "LazySequence",
    "QueryView",
    "SqlAlchemyRepository",
    "SqlAlchemyStorageContext",
    "SqlAlchemyTransactionBoundary",
    "SqlAlchemyUnitOfWork",
    "describe",
    "register_entity",
]
