"""Ledger database engine and transactional sessions."""

from contextlib import contextmanager
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from refengine.logging_config import get_logger
from refengine.settings import settings
from refengine.storage.models import Base

logger = get_logger(__name__)

# Milliseconds a SQLite writer waits for the file lock before failing
SQLITE_BUSY_TIMEOUT_MS = 5000


def _engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {
        "echo": settings.env == "development",
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        # Sessions are opened from FastAPI's threadpool and the notifier executor
        options["connect_args"] = {"check_same_thread": False}
    return options


class Database:
    """Owns the engine and hands out one session per unit of work.

    Every balance or status change runs inside ``session()``, so a raised
    exception leaves the ledger exactly as it was.
    """

    def __init__(self, database_url: str | None = None):
        self.database_url = database_url or settings.database_url
        self.engine = create_engine(self.database_url, **_engine_options(self.database_url))

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", self._configure_sqlite)
            event.listen(self.engine, "begin", self._begin_immediate)

        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.info(
            "database_initialized",
            dialect=self.engine.dialect.name,
            url=self.engine.url.render_as_string(hide_password=True),
        )

    @staticmethod
    def _configure_sqlite(dbapi_connection, connection_record) -> None:
        # pysqlite defers BEGIN until the first write; "begin" below issues it instead
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    @staticmethod
    def _begin_immediate(connection) -> None:
        """Take the SQLite write lock when a transaction starts.

        SQLite ignores SELECT ... FOR UPDATE, so this is what makes the
        locked read-check-write sections serialize per database file.
        """
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)
        logger.info("tables_created", tables=len(Base.metadata.tables))

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Run a unit of work: commit on success, roll back on any error.

        Yields:
            Session bound to the ledger engine
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.debug("transaction_rolled_back", error_type=type(e).__name__)
            raise
        finally:
            session.close()


# Shared ledger used by the API and the CLI
db = Database()
