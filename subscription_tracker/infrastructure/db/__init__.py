"""
Database Infrastructure Package for Subscription Tracker

Exports database utilities.
"""

from subscription_tracker.infrastructure.db.database import (
    DatabaseManager,
    SessionFactory,
    get_db_manager,
    get_session_context,
    init_db,
    close_db,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "SessionFactory",
    "get_db_manager",
    "get_session_context",
    "init_db",
    "close_db",
]
