import logging
import time
from contextlib import contextmanager, nullcontext
from threading import Lock
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from notification_engine.core.config import get_settings
from notification_engine.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

Base = declarative_base()

T = TypeVar("T")


def get_engine():
    settings = get_settings()
    return create_engine(
        f"sqlite:///{settings.sqlite_path}",
        future=True,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )


engine = get_engine()
with engine.connect() as conn:
    conn.execute(text("PRAGMA journal_mode=WAL"))
write_lock = Lock()
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False,
)


@contextmanager
def session_scope(*, use_lock: bool = False) -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations.

    The optional ``use_lock`` flag serializes access for SQLite write-heavy
    workflows to avoid ``database is locked`` errors when multiple workers
    compete for the same connection.
    """

    lock_ctx = write_lock if use_lock else nullcontext()
    with lock_ctx:
        session = SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def with_retry(operation: Callable[[Session], T], retries: int = 3, delay: float = 0.2, use_lock: bool = True) -> T:
    """Run ``operation`` in its own session, retrying transient store errors.

    Raises StoreUnavailableError once the retries are exhausted.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(retries):
        try:
            with session_scope(use_lock=use_lock) as session:
                return operation(session)
        except OperationalError as exc:
            last_exc = exc
            logger.warning("Store operation failed (attempt %s/%s): %s", attempt + 1, retries, exc)
            if attempt + 1 < retries:
                time.sleep(delay * (attempt + 1))
    raise StoreUnavailableError(str(last_exc)) from last_exc


def init_db() -> None:
    import notification_engine.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
