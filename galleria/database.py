from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from .config import settings


def build_engine(url: str, **kwargs) -> Engine:
    """Engine for `url`; SQLite connections may be used from FastAPI's worker threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, future=True, **kwargs)


def session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, future=True)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = session_factory(engine)

# Base class for all ORM models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Yield a database session; closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
