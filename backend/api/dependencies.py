"""
Dependency injection for the API service.
Provides the database manager and the settlement engine to route handlers.
"""
from __future__ import annotations

from shared.utils.database import DatabaseManager

from settlement.engine import SettlementEngine

# Module-level singletons, initialized at startup
_db: DatabaseManager | None = None
_engine: SettlementEngine | None = None


def init_dependencies(db: DatabaseManager, engine: SettlementEngine) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _db, _engine
    _db = db
    _engine = engine


def get_db() -> DatabaseManager:
    """FastAPI dependency: returns the shared DatabaseManager."""
    if _db is None:
        raise RuntimeError("DatabaseManager not initialized, call init_dependencies first")
    return _db


def get_engine() -> SettlementEngine:
    """FastAPI dependency: returns the shared SettlementEngine."""
    if _engine is None:
        raise RuntimeError("SettlementEngine not initialized, call init_dependencies first")
    return _engine
