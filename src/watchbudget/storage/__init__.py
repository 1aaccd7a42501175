"""Persistence for watch sessions and daily budgets.

Public API:
    SessionLedger, DailyBudgetAggregator, CatalogLookup -- Abstract interfaces
    SqlSessionLedger, SqlDailyBudgetAggregator, SqlCatalogLookup -- SQLAlchemy backends
"""

from watchbudget.storage.base import (
    CatalogLookup,
    DailyBudgetAggregator,
    SessionLedger,
    StorageError,
)
from watchbudget.storage.budget import SqlDailyBudgetAggregator
from watchbudget.storage.catalog import SqlCatalogLookup
from watchbudget.storage.db import (
    Base,
    create_db_engine,
    init_db,
    make_session_factory,
    write_transaction,
)
from watchbudget.storage.ledger import SqlSessionLedger

__all__ = [
    "Base",
    "CatalogLookup",
    "DailyBudgetAggregator",
    "SessionLedger",
    "SqlCatalogLookup",
    "SqlDailyBudgetAggregator",
    "SqlSessionLedger",
    "StorageError",
    "create_db_engine",
    "init_db",
    "make_session_factory",
    "write_transaction",
]
