import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from . import crud
from . import database as db_module
from .database import Store
from .schemas import HistoryEntry, ImageResponse

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


def history_labels(when: datetime) -> Tuple[str, str]:
    """Human-readable date and time labels, e.g. ('3/7/2026', '4:05:09 PM')."""
    date_label = f"{when.month}/{when.day}/{when.year}"
    time_label = when.strftime("%I:%M:%S %p").lstrip("0")
    return date_label, time_label


def mime_type_of(payload: str, default: str = DEFAULT_MIME_TYPE) -> str:
    """MIME type declared by a data URI (``data:image/png;base64,...``), else default."""
    if payload.startswith("data:") and ";" in payload:
        declared = payload[len("data:"):payload.index(";")]
        if declared:
            return declared
    return default


def _to_entry(history: db_module.History) -> HistoryEntry:
    thumbnail = history.thumbnail.image_data if history.thumbnail is not None else ""
    if not thumbnail:
        logger.warning(f"History '{history.id}' has no thumbnail image row; using empty thumbnail.")
    return HistoryEntry(
        id=history.id,
        date=history.date,
        time=history.time,
        count=history.count,
        thumbnail=thumbnail,
        images=[link.image.image_data for link in history.links if link.image is not None],
        created_at=history.created_at,
    )


class MediaArchive:
    """
    Image payloads owned by users, grouped into history entries.
    """

    def __init__(self, store: Store):
        self.store = store

    def user_exists(self, user_id: str) -> bool:
        with self.store.session() as db:
            return crud.get_user(db, user_id) is not None

    def save_image(
        self,
        user_id: str,
        payload: str,
        mime_type: str = DEFAULT_MIME_TYPE,
        is_original: bool = False,
    ) -> ImageResponse:
        with self.store.transaction() as db:
            image = crud.create_image(db, user_id, payload, mime_type, is_original)
        return ImageResponse.model_validate(image)

    def get_image(self, image_id: str) -> Optional[ImageResponse]:
        with self.store.session() as db:
            image = crud.get_image(db, image_id)
            return ImageResponse.model_validate(image) if image else None

    def list_user_images(self, user_id: str) -> List[ImageResponse]:
        with self.store.session() as db:
            return [ImageResponse.model_validate(image) for image in crud.get_images_by_user(db, user_id)]

    def delete_image(self, image_id: str) -> bool:
        with self.store.transaction() as db:
            return crud.delete_image(db, image_id)

    def record_history(self, user_id: str, date: str, time: str, image_ids: Sequence[str]) -> HistoryEntry:
        """
        Groups existing images into one history entry; the first id is the thumbnail.
        All rows are written or none are.
        """
        if not image_ids:
            raise ValueError("record_history requires at least one image id")
        with self.store.transaction() as db:
            history = crud.create_history(db, user_id, date, time, list(image_ids))
            history_id = history.id
        return self._load_entry(history_id)

    def record_generation(
        self,
        user_id: str,
        payloads: Sequence[str],
        when: Optional[datetime] = None,
    ) -> HistoryEntry:
        """
        Saves generated payloads as images (is_original=False) and groups them into
        one history entry dated ``when``, all in a single transaction.
        """
        if not payloads:
            raise ValueError("record_generation requires at least one payload")
        date_label, time_label = history_labels(when or datetime.now())
        with self.store.transaction() as db:
            image_ids = [
                crud.create_image(db, user_id, payload, mime_type_of(payload), is_original=False).id
                for payload in payloads
            ]
            history = crud.create_history(db, user_id, date_label, time_label, image_ids)
            history_id = history.id
        logger.info(f"Recorded history '{history_id}' with {len(image_ids)} generated image(s) for user '{user_id}'.")
        return self._load_entry(history_id)

    def _load_entry(self, history_id: str) -> HistoryEntry:
        with self.store.session() as db:
            return _to_entry(crud.get_history(db, history_id))

    def load_history(self, user_id: str) -> List[HistoryEntry]:
        """Newest first; each entry carries its thumbnail and ordered image payloads."""
        with self.store.session() as db:
            return [_to_entry(history) for history in crud.get_history_by_user(db, user_id)]

    def delete_history(self, history_id: str) -> bool:
        """Deletes the entry and its links. The images stay in the archive."""
        with self.store.transaction() as db:
            deleted = crud.delete_history(db, history_id)
        if not deleted:
            logger.info(f"History '{history_id}' not found for deletion.")
        return deleted
