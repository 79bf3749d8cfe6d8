import logging
import random
import time
import uuid as py_uuid # For generating ids
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    create_engine,
    event,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from . import config
from .errors import DuplicateAssociation, DuplicateEmail, IntegrityViolation, MissingReference

logger = logging.getLogger(__name__)

Base = declarative_base()


def generate_id(prefix: str) -> str:
    """
    Returns an opaque, prefixed identifier such as ``user_<uuid4>``.

    uuid4 draws from os.urandom. If the platform has no secure randomness source
    the id degrades to ``<prefix>_<millis>_<random>``, which is NOT guaranteed
    unique; this is logged every time it happens.
    """
    try:
        return f"{prefix}_{py_uuid.uuid4()}"
    except NotImplementedError:
        logger.warning(f"Secure randomness unavailable, generating degraded '{prefix}' id (uniqueness not guaranteed).")
        return f"{prefix}_{int(time.time() * 1000)}_{random.getrandbits(48):012x}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetimes on every backend. SQLite drops the offset on
    storage, so values are written as UTC and read back with UTC attached.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


# --- ORM models ---

class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

    id = Column(String(64), primary_key=True, default=lambda: generate_id("user"))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    profile_image = Column(Text)
    credits = Column(Integer, nullable=False, default=config.SIGNUP_CREDITS)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)


class Image(Base):
    __tablename__ = "images"

    id = Column(String(64), primary_key=True, default=lambda: generate_id("img"))
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    image_data = Column(Text, nullable=False)
    mime_type = Column(String(64), nullable=False, default="image/jpeg")
    is_original = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)


class History(Base):
    __tablename__ = "history"

    id = Column(String(64), primary_key=True, default=lambda: generate_id("hist"))
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    date = Column(String(32), nullable=False)
    time = Column(String(32), nullable=False)
    count = Column(Integer, nullable=False)
    thumbnail_image_id = Column(String(64), ForeignKey("images.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    thumbnail = relationship("Image", foreign_keys=[thumbnail_image_id], lazy="joined")
    links = relationship(
        "HistoryImage",
        order_by="HistoryImage.order_index",
        viewonly=True,
    )


class HistoryImage(Base):
    __tablename__ = "history_images"

    history_id = Column(String(64), ForeignKey("history.id", ondelete="CASCADE"), primary_key=True)
    image_id = Column(String(64), ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    order_index = Column(Integer, nullable=False)

    image = relationship("Image", lazy="joined")


class CreditTransaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("type IN ('purchase', 'deduction', 'refund')", name="ck_transactions_type"),
    )

    id = Column(String(64), primary_key=True, default=lambda: generate_id("txn"))
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    type = Column(String(16), nullable=False)
    description = Column(Text)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)


# --- Integrity error translation ---

def translate_integrity_error(exc: IntegrityError) -> IntegrityViolation:
    """Maps a driver-level constraint failure onto the core's error taxonomy."""
    message = str(exc.orig).lower()
    if "users.email" in message or ("unique" in message and "email" in message):
        return DuplicateEmail()
    if "history_images" in message and ("unique" in message or "primary key" in message or "duplicate" in message):
        return DuplicateAssociation("Image is already linked to this history entry")
    if "foreign key" in message:
        return MissingReference("Referenced row does not exist")
    return IntegrityViolation(str(exc.orig))


# --- Store lifecycle ---

def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _on_sqlite_connect(dbapi_connection, connection_record):
    # Hand transaction control to the "begin" hook below and turn on FK enforcement.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn):
    # Take the write lock up front so concurrent writers queue on the busy timeout.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class Store:
    """
    Explicitly constructed handle on the relational store.

    ``open()`` builds the engine and the schema, ``close()`` disposes it. Every
    component that needs storage receives the Store it should use.
    """

    def __init__(self, url: Optional[str] = None, echo: bool = False):
        self.url = url or config.DATABASE_URL
        self.echo = echo
        self._engine = None
        self._sessionmaker = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self):
        if self._engine is None:
            raise RuntimeError("Store is not open. Call open() first.")
        return self._engine

    def open(self) -> "Store":
        if self._engine is not None:
            return self

        connect_args = {}
        if _is_sqlite(self.url):
            connect_args = {"check_same_thread": False, "timeout": 30}

        engine = create_engine(self.url, echo=self.echo, connect_args=connect_args)
        if _is_sqlite(self.url):
            event.listen(engine, "connect", _on_sqlite_connect)
            event.listen(engine, "begin", _on_sqlite_begin)

        Base.metadata.create_all(bind=engine)
        self._engine = engine
        self._sessionmaker = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        logger.info(f"Store opened: {self.url.split('@')[-1]}")
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Store closed.")
        self._engine = None
        self._sessionmaker = None

    def session(self) -> Session:
        """A plain session for reads. The caller closes it (use it as a context manager)."""
        if self._sessionmaker is None:
            raise RuntimeError("Store is not open. Call open() first.")
        return self._sessionmaker()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Unit of work: commits when the block exits cleanly, rolls back otherwise."""
        db = self.session()
        try:
            yield db
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise translate_integrity_error(exc) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def __enter__(self) -> "Store":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_store(url: Optional[str] = None, echo: bool = False) -> Store:
    return Store(url, echo=echo).open()
