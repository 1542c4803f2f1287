"""
Repository layer - SQLite-backed storage medium for the durable cache.
"""

from loguru import logger
from sqlalchemy import Engine, delete, select

from resilience.datastore.engine import create_storage_engine, get_session_factory
from resilience.datastore.models import DurableCacheItemDB


class SqliteStorage:
    """
    Storage medium persisted in a SQL database (SQLite by default).

    Several processes may share one database file. There is no locking
    beyond the database's own, so the last write wins.
    """

    def __init__(self, url: str = "sqlite:///./durable_cache.db", engine: Engine | None = None):
        self._engine = engine or create_storage_engine(url)
        self._session_factory = get_session_factory(self._engine)

    def get_item(self, key: str) -> str | None:
        """Raw stored value for ``key``"""
        with self._session_factory() as session:
            row = session.get(DurableCacheItemDB, key)
            return row.value if row else None

    def set_item(self, key: str, value: str) -> None:
        """Insert or replace ``key``"""
        with self._session_factory.begin() as session:
            row = session.get(DurableCacheItemDB, key)
            if row is None:
                session.add(DurableCacheItemDB(key=key, value=value))
            else:
                row.value = value

    def remove_item(self, key: str) -> None:
        """Delete ``key`` if present"""
        with self._session_factory.begin() as session:
            session.execute(delete(DurableCacheItemDB).where(DurableCacheItemDB.key == key))

    def keys(self) -> list[str]:
        """All stored keys, whatever their prefix"""
        with self._session_factory() as session:
            return list(session.scalars(select(DurableCacheItemDB.key)).all())

    def close(self) -> None:
        """Dispose the engine's connection pool"""
        self._engine.dispose()
        logger.debug("SqliteStorage closed")
