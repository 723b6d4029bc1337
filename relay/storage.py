import asyncio
import logging
import threading
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from relay.errors import PersistenceError, ValidationError
from relay.models import Base, Compliment
from relay.schemas import StoredCompliment

logger = logging.getLogger(__name__)

T = TypeVar("T")


def driver_timeouts(backend: str, timeout: float) -> dict:
    """Driver connect_args that bound connection and statement time on the datastore side."""
    if backend == "sqlite":
        # SQLite connections are handed between worker threads
        return {"check_same_thread": False, "timeout": timeout}
    if backend == "postgresql":
        return {
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        }
    return {}


def build_url(database_url: str, service_key: Optional[str] = None) -> URL:
    """Parse the datastore URL, applying the service credential as its password."""
    url = make_url(database_url)
    if service_key:
        url = url.set(password=service_key)
    return url


class ComplimentGateway:
    """
    Thin client over the `compliments` table.

    The driver is blocking, so every public coroutine runs its query in a
    worker thread and gives up after `timeout` seconds. The same limit is
    handed to the driver, and a timed out insert is rolled back rather than
    committed, so a caller told the write failed never finds it stored.
    """

    def __init__(self, database_url: str, service_key: Optional[str] = None, timeout: float = 10.0):
        url = build_url(database_url, service_key)

        backend = url.get_backend_name()
        # SQLite pools (SingletonThreadPool for :memory:) take no pool_timeout
        pool_args = {} if backend == "sqlite" else {"pool_timeout": timeout}

        self.timeout = timeout
        self.engine = create_engine(
            url,
            connect_args=driver_timeouts(backend, timeout),
            **pool_args,
            pool_pre_ping=True,
            echo=False,
        )
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        logger.debug(f"Datastore gateway created for backend {backend}")

    def init_schema(self) -> None:
        """
        Create the compliments table if it does not exist.
        Called during application startup.
        """
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database schema initialized")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database schema: {e}")
            raise

    def dispose(self) -> None:
        self.engine.dispose()

    def check_health(self) -> bool:
        """
        Check that the datastore is reachable and the compliments table exists.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                if not inspect(conn).has_table(Compliment.__tablename__):
                    logger.error("Database schema not applied: 'compliments' table not found")
                    return False
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    # =========================================================================
    # Public async API
    # =========================================================================

    async def insert(self, recipient_code: str, message: str) -> StoredCompliment:
        """
        Store a compliment and return the persisted row.

        Raises:
            ValidationError: recipient_code or message is empty
            PersistenceError: the datastore failed, timed out or returned no row
        """
        if not recipient_code or not message:
            raise ValidationError("recipientCode and message are required")
        return await self._run("insert", self._insert, recipient_code, message)

    async def list_by_recipient(self, recipient_code: str) -> list[StoredCompliment]:
        """
        Return all compliments for a recipient code, newest first.

        Raises:
            PersistenceError: the datastore failed or timed out
        """
        return await self._run("list_by_recipient", self._list_by_recipient, recipient_code)

    async def _run(self, operation: str, func: Callable[..., T], *args) -> T:
        # Set when the caller stops waiting; the worker must not commit after that
        abandoned = threading.Event()
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args, abandoned), timeout=self.timeout)
        except asyncio.TimeoutError:
            abandoned.set()
            logger.error(f"Datastore {operation} timed out after {self.timeout}s")
            raise PersistenceError(f"{operation} timed out") from None

    # =========================================================================
    # Blocking queries (run in worker threads)
    # =========================================================================

    def _insert(self, recipient_code: str, message: str, abandoned: threading.Event) -> StoredCompliment:
        logger.info(f"Inserting compliment for recipient {recipient_code}")
        with self.SessionLocal() as db:
            try:
                row = Compliment(recipient_code=recipient_code, message=message)
                db.add(row)
                db.flush()
                if abandoned.is_set():
                    db.rollback()
                    logger.warning(f"Insert for recipient {recipient_code} abandoned after timeout, rolled back")
                    raise PersistenceError("insert abandoned")
                db.commit()
                db.refresh(row)
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Datastore insert failed for recipient {recipient_code}: {e}")
                raise PersistenceError("insert failed") from e

            if row.id is None:
                raise PersistenceError("insert returned no row")

            logger.debug(f"Compliment stored: id={row.id}")
            return StoredCompliment.model_validate(row)

    def _list_by_recipient(self, recipient_code: str, abandoned: threading.Event) -> list[StoredCompliment]:
        logger.info(f"Querying compliments for recipient {recipient_code}")
        with self.SessionLocal() as db:
            try:
                rows = (
                    db.query(Compliment)
                    .filter(Compliment.recipient_code == recipient_code)
                    .order_by(Compliment.created_at.desc(), Compliment.id.desc())
                    .all()
                )
            except SQLAlchemyError as e:
                logger.error(f"Datastore select failed for recipient {recipient_code}: {e}")
                raise PersistenceError("select failed") from e

        logger.debug(f"Retrieved {len(rows)} compliments for recipient {recipient_code}")
        return [StoredCompliment.model_validate(row) for row in rows]
