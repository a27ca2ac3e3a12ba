from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from ticketsync.config import settings


class Base(DeclarativeBase):
    pass


_engine = None


def get_engine():
    global _engine
    if _engine is None:
        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
        )
    return _engine


SessionLocal = sessionmaker(autoflush=False, autocommit=False)


def get_session():
    """Return a new session bound to the application engine."""
    if SessionLocal.kw.get("bind") is None:
        SessionLocal.configure(bind=get_engine())
    return SessionLocal()


def get_db():
    """Request-scoped session for the ticket routes; closed when the response is sent."""
    db = get_session()
    try:
        yield db
    finally:
        db.close()
