import logging
from datetime import datetime, timezone
from typing import Generator, Optional, Tuple

from sqlalchemy import and_, create_engine, inspect, or_, text
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from oa_console import schemas
from oa_console.config import get_settings
from oa_console.errors import StorageError

logger = logging.getLogger(__name__)

settings = get_settings()

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug("Initializing database")
    try:
        ensure_supported_dialect(engine)

        # Import models to register them with Base.metadata
        from oa_console.models import Message  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and the messages table exists.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        if not inspect(engine).has_table("messages"):
            logger.error("Database schema not applied: 'messages' table not found")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Repository Functions
# =============================================================================

def _to_row(message: schemas.Message) -> dict:
    return {
        "id": message.id,
        "odna": message.counterpart_id,
        "direction": message.direction.value,
        "type": message.type.value,
        "text": message.text,
        "image_url": message.image_url,
        "image_object": getattr(message.content, "object_name", None),
        "timestamp": message.timestamp,
        "webhook_event_id": message.webhook_event_id,
        "created_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


def _from_row(row) -> schemas.Message:
    return schemas.Message.model_validate({
        "id": row.id,
        "odna": row.odna,
        "direction": row.direction,
        "type": row.type,
        "text": row.text,
        "imageUrl": row.image_url,
        "image_object": row.image_object,
        "timestamp": int(row.timestamp),
        "webhookEventId": row.webhook_event_id,
    })


# Dialects with a conflict-ignoring INSERT; idempotent ingestion depends on it
SUPPORTED_DIALECTS = ("sqlite", "postgresql", "mysql", "mariadb")


def ensure_supported_dialect(bind) -> str:
    """
    Raises:
        StorageError: the database has no conflict-ignoring insert
    """
    dialect = bind.dialect.name
    if dialect not in SUPPORTED_DIALECTS:
        raise StorageError(
            f"unsupported database dialect {dialect}; use one of {', '.join(SUPPORTED_DIALECTS)}"
        )
    return dialect


def _insert_ignore(db: Session, values: dict):
    """Build an INSERT that silently does nothing when the id already exists."""
    from oa_console.models import Message

    dialect = ensure_supported_dialect(db.get_bind())
    if dialect == "sqlite":
        return sqlite.insert(Message).values(**values).on_conflict_do_nothing(index_elements=["id"])
    if dialect == "postgresql":
        return postgresql.insert(Message).values(**values).on_conflict_do_nothing(index_elements=["id"])
    return mysql.insert(Message).values(**values).prefix_with("IGNORE")


def get_message(db: Session, message_id: str) -> Optional[schemas.Message]:
    """
    Retrieve a message by its ID.

    Returns:
        Message if found, None otherwise
    """
    from oa_console.models import Message

    row = db.query(Message).filter(Message.id == message_id).first()
    return _from_row(row) if row is not None else None


def insert_if_absent(db: Session, message: schemas.Message) -> Tuple[schemas.Message, bool]:
    """
    Store a message unless a row with the same id already exists.

    Concurrent redeliveries race on the primary key, not on an application
    check: exactly one insert wins and the others become no-ops. An existing
    row is never overwritten.

    Returns:
        Tuple of (stored message, created)
        - (message, True): row inserted
        - (existing, False): id already stored, existing content returned

    Raises:
        StorageError: the database failed
    """
    logger.debug(f"Inserting message: id={message.id}, odna={message.counterpart_id}")

    try:
        result = db.execute(_insert_ignore(db, _to_row(message)))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store message {message.id}: {e}")
        raise StorageError(f"failed to store message {message.id}") from e

    if result.rowcount == 1:
        logger.info(f"Message created: {message.id}")
        return message, True

    logger.info(f"Duplicate message ignored: {message.id}")
    try:
        existing = get_message(db, message.id)
    except SQLAlchemyError as e:
        raise StorageError(f"failed to read message {message.id}") from e
    return (existing or message), False


def query_page(
    db: Session,
    odna: Optional[str] = None,
    limit: int = 50,
    before: Optional[int] = None,
    before_id: Optional[str] = None,
) -> schemas.MessagePage:
    """
    Read one page of messages, newest page first, returned oldest-first.

    Args:
        db: Database session
        odna: Restrict to one counterpart; None reads across all of them
        limit: Page size
        before: Exclusive upper bound on timestamp (the "older than" cursor)
        before_id: With before, makes the cursor the compound (timestamp, id)
            key so messages sharing the boundary timestamp are not skipped

    Returns:
        MessagePage in ascending (timestamp, id) order. An empty page with
        has_more=False when the database is unavailable.
    """
    from oa_console.models import Message

    logger.debug(f"Querying messages: odna={odna}, limit={limit}, before={before}, before_id={before_id}")

    try:
        query = db.query(Message)

        if odna:
            query = query.filter(Message.odna == odna)

        if before is not None:
            if before_id is not None:
                query = query.filter(or_(
                    Message.timestamp < before,
                    and_(Message.timestamp == before, Message.id < before_id),
                ))
            else:
                query = query.filter(Message.timestamp < before)

        rows = (
            query.order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(limit + 1)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Error fetching messages: {e}")
        return schemas.MessagePage(messages=[], has_more=False)

    has_more = len(rows) > limit
    messages = [_from_row(row) for row in rows[:limit]]
    messages.reverse()

    logger.debug(f"Retrieved {len(messages)} messages, has_more={has_more}")
    return schemas.MessagePage(messages=messages, has_more=has_more)
