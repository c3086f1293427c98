from academy.db.base import AcademyScopedMixin, Base, IDMixin, TimestampMixin, as_utc, utcnow
from academy.db.session import SessionLocal, engine, get_db, get_session_factory

__all__ = [
    "AcademyScopedMixin",
    "Base",
    "IDMixin",
    "TimestampMixin",
    "as_utc",
    "utcnow",
    "engine",
    "SessionLocal",
    "get_db",
    "get_session_factory",
]
