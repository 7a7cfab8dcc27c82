from app.db.base import Base
from app.db.session import SessionLocal, engine, get_db, make_session_factory, session_scope
from app.db.tables import ALL_TABLE_NAMES, TRANSIENT_TABLE_NAMES

__all__ = [
    "get_db",
    "engine",
    "SessionLocal",
    "Base",
    "make_session_factory",
    "session_scope",
    "ALL_TABLE_NAMES",
    "TRANSIENT_TABLE_NAMES",
]
