"""
Database engine setup for the durable cache.
Uses a synchronous SQLAlchemy engine, since the durable cache exposes a
synchronous call surface.
"""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from resilience.datastore.models import Base


def create_storage_engine(url: str, echo: bool = False) -> Engine:
    """Create the engine and make sure the cache table exists"""
    engine = create_engine(url, echo=echo, future=True)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to ``engine``"""
    return sessionmaker(bind=engine, expire_on_commit=False)
