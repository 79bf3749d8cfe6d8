"""
Relational store operations.

Every function works inside the caller's session and flushes rather than
commits, so a service can group several of them into one unit of work
(``Store.transaction()``). Constraint failures surface as the core's
IntegrityViolation family, never as driver errors.
"""
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload
from typing import Optional, List, Sequence, Dict, Any

from . import database as db_module
from .database import generate_id, translate_integrity_error, utcnow
from .errors import DuplicateAssociation, DuplicateEmail, MissingReference
from .schemas import TransactionType


def _flush(db: Session) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise translate_integrity_error(exc) from exc


# --- Users ---

def create_user(db: Session, name: str, email: str, password_hash: str, credits: int) -> db_module.User:
    """Inserts a user. Raises DuplicateEmail if the email is taken."""
    user = db_module.User(
        id=generate_id("user"),
        name=name,
        email=email,
        password_hash=password_hash,
        credits=credits,
    )
    db.add(user)
    try:
        _flush(db)
    except DuplicateEmail as exc:
        raise DuplicateEmail(email) from exc
    return user

def get_user(db: Session, user_id: str) -> Optional[db_module.User]:
    """Fetches a user by id."""
    return db.get(db_module.User, user_id)

def get_user_by_email(db: Session, email: str) -> Optional[db_module.User]:
    """Fetches a user by (already normalized) email."""
    return db.execute(select(db_module.User).where(db_module.User.email == email)).scalar_one_or_none()

def update_user(db: Session, user_id: str, update_data: Dict[str, Any]) -> Optional[db_module.User]:
    """
    Applies a partial update. Only keys present in update_data are touched;
    updated_at is bumped even when nothing else changes.
    """
    user = get_user(db, user_id)
    if user is None:
        return None
    for key, value in update_data.items():
        setattr(user, key, value)
    user.updated_at = utcnow()
    try:
        _flush(db)
    except DuplicateEmail as exc:
        raise DuplicateEmail(update_data.get("email")) from exc
    return user

def delete_user(db: Session, user_id: str) -> bool:
    """Deletes the user; images, history, links and transactions go with it via ON DELETE CASCADE."""
    result = db.execute(delete(db_module.User).where(db_module.User.id == user_id))
    return result.rowcount > 0

def increment_credits(db: Session, user_id: str, amount: int) -> Optional[int]:
    """credits += amount. Returns the new balance, or None if the user does not exist."""
    result = db.execute(
        update(db_module.User)
        .where(db_module.User.id == user_id)
        .values(credits=db_module.User.credits + amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return _read_credits(db, user_id)

def decrement_credits_if_sufficient(db: Session, user_id: str, amount: int) -> Optional[int]:
    """
    Conditional debit in a single statement:
    UPDATE users SET credits = credits - :amount WHERE id = :id AND credits >= :amount.
    Returns the new balance, or None when no row matched (unknown user or insufficient balance).
    """
    result = db.execute(
        update(db_module.User)
        .where(db_module.User.id == user_id, db_module.User.credits >= amount)
        .values(credits=db_module.User.credits - amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return _read_credits(db, user_id)

def _read_credits(db: Session, user_id: str) -> Optional[int]:
    """Reads the stored balance, or None for an unknown user."""
    return db.execute(select(db_module.User.credits).where(db_module.User.id == user_id)).scalar_one_or_none()

def get_credits(db: Session, user_id: str) -> Optional[int]:
    """Current credit balance of a user."""
    return _read_credits(db, user_id)

# --- Images ---

def create_image(
    db: Session,
    user_id: str,
    image_data: str,
    mime_type: str = "image/jpeg",
    is_original: bool = False,
) -> db_module.Image:
    """Stores one image payload for a user."""
    image = db_module.Image(
        id=generate_id("img"),
        user_id=user_id,
        image_data=image_data,
        mime_type=mime_type,
        is_original=1 if is_original else 0,
    )
    db.add(image)
    _flush(db)
    return image

def get_image(db: Session, image_id: str) -> Optional[db_module.Image]:
    """Fetches an image by id."""
    return db.get(db_module.Image, image_id)

def get_images_by_user(db: Session, user_id: str) -> List[db_module.Image]:
    """Newest first."""
    return list(
        db.execute(
            select(db_module.Image)
            .where(db_module.Image.user_id == user_id)
            .order_by(db_module.Image.created_at.desc())
        ).scalars()
    )

def delete_image(db: Session, image_id: str) -> bool:
    """Deletes an image; links and history entries using it go with it via ON DELETE CASCADE."""
    result = db.execute(delete(db_module.Image).where(db_module.Image.id == image_id))
    return result.rowcount > 0

# --- History ---

def create_history(
    db: Session,
    user_id: str,
    date: str,
    time: str,
    image_ids: Sequence[str],
) -> db_module.History:
    """
    Inserts the history row and one association row per image, in order.
    The first image is the thumbnail. Every image must exist and belong to user_id.
    """
    if not image_ids:
        raise ValueError("A history entry needs at least one image")
    if len(set(image_ids)) != len(image_ids):
        raise DuplicateAssociation("Image ids must be unique within a history entry")

    owned = db.execute(
        select(func.count())
        .select_from(db_module.Image)
        .where(db_module.Image.id.in_(image_ids), db_module.Image.user_id == user_id)
    ).scalar_one()
    if owned != len(image_ids):
        raise MissingReference(f"{len(image_ids) - owned} image(s) missing or not owned by user {user_id}")

    history = db_module.History(
        id=generate_id("hist"),
        user_id=user_id,
        date=date,
        time=time,
        count=len(image_ids),
        thumbnail_image_id=image_ids[0],
    )
    db.add(history)
    _flush(db)
    add_history_images(db, history.id, image_ids)
    return history

def add_history_images(db: Session, history_id: str, image_ids: Sequence[str], start_index: int = 0) -> None:
    """Links images to a history entry, numbering them from start_index."""
    rows = [
        {"history_id": history_id, "image_id": image_id, "order_index": start_index + index}
        for index, image_id in enumerate(image_ids)
    ]
    try:
        db.execute(insert(db_module.HistoryImage), rows)
    except IntegrityError as exc:
        db.rollback()
        raise translate_integrity_error(exc) from exc

def get_history(db: Session, history_id: str) -> Optional[db_module.History]:
    """Fetches a history entry by id."""
    return db.get(db_module.History, history_id)

def get_history_by_user(db: Session, user_id: str) -> List[db_module.History]:
    """Newest first, with thumbnail and ordered image links loaded."""
    return list(
        db.execute(
            select(db_module.History)
            .where(db_module.History.user_id == user_id)
            .options(selectinload(db_module.History.links))
            .order_by(db_module.History.created_at.desc())
        ).unique().scalars()
    )

def delete_history(db: Session, history_id: str) -> bool:
    """Removes the entry and its links; the images themselves are kept."""
    result = db.execute(delete(db_module.History).where(db_module.History.id == history_id))
    return result.rowcount > 0

# --- Transactions ---

def create_transaction(
    db: Session,
    user_id: str,
    amount: int,
    type: TransactionType,
    description: Optional[str] = None,
) -> db_module.CreditTransaction:
    """Appends one entry to the credit transaction log."""
    transaction = db_module.CreditTransaction(
        id=generate_id("txn"),
        user_id=user_id,
        amount=amount,
        type=TransactionType(type).value,
        description=description or None,
    )
    db.add(transaction)
    _flush(db)
    return transaction

def get_transactions_by_user(db: Session, user_id: str) -> List[db_module.CreditTransaction]:
    """Newest first."""
    return list(
        db.execute(
            select(db_module.CreditTransaction)
            .where(db_module.CreditTransaction.user_id == user_id)
            .order_by(db_module.CreditTransaction.created_at.desc())
        ).scalars()
    )
