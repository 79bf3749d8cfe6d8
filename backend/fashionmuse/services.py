import logging
from dataclasses import dataclass
from typing import Optional, Union, Dict, Any

from . import config, crud
from .ai_core import ImageEditClient
from .archive import MediaArchive
from .database import Store
from .errors import DuplicateEmail, InvalidCredentials, UserNotFound
from .generation import GenerationOrchestrator
from .ledger import CreditLedger
from .schemas import ProfileUpdate, TransactionType, UserResponse
from .security import hash_password, verify_password

logger = logging.getLogger(__name__)

# Verified against on unknown emails so both sign-in failures cost the same.
_UNKNOWN_USER_HASH = hash_password("unknown-user")


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """
    Sign-up, sign-in and profile management on top of the identity and relational stores.
    """

    def __init__(self, store: Store, signup_credits: int = config.SIGNUP_CREDITS):
        self.store = store
        self.signup_credits = signup_credits

    def sign_up(self, name: str, email: str, password: str) -> UserResponse:
        email = normalize_email(email)
        with self.store.transaction() as db:
            if crud.get_user_by_email(db, email) is not None:
                logger.info(f"Sign-up rejected, email already registered: {email}")
                raise DuplicateEmail(email)
            user = crud.create_user(db, name.strip(), email, hash_password(password), credits=self.signup_credits)
            if self.signup_credits > 0:
                crud.create_transaction(db, user.id, self.signup_credits, TransactionType.PURCHASE, "welcome credits")
            response = UserResponse.model_validate(user)
        logger.info(f"User signed up: '{response.id}'")
        return response

    def sign_in(self, email: str, password: str) -> UserResponse:
        with self.store.session() as db:
            user = crud.get_user_by_email(db, normalize_email(email))
            if user is None:
                verify_password(password, _UNKNOWN_USER_HASH)
                raise InvalidCredentials()
            if not verify_password(password, user.password_hash):
                raise InvalidCredentials()
            return UserResponse.model_validate(user)

    def get_user(self, user_id: str) -> Optional[UserResponse]:
        with self.store.session() as db:
            user = crud.get_user(db, user_id)
            return UserResponse.model_validate(user) if user else None

    def update_profile(self, user_id: str, updates: Union[ProfileUpdate, Dict[str, Any]]) -> UserResponse:
        """
        Only the fields present in updates change; updated_at is always bumped.
        """
        if isinstance(updates, dict):
            updates = ProfileUpdate(**updates)
        update_data = updates.model_dump(exclude_unset=True)
        if update_data.get("email") is not None:
            update_data["email"] = normalize_email(update_data["email"])
        if "name" in update_data and update_data["name"] is None:
            del update_data["name"]
        if "email" in update_data and update_data["email"] is None:
            del update_data["email"]

        with self.store.transaction() as db:
            user = crud.update_user(db, user_id, update_data)
            if user is None:
                raise UserNotFound(user_id)
            return UserResponse.model_validate(user)

    def delete_account(self, user_id: str) -> bool:
        """Removes the user and, by cascade, every image, history entry and transaction they own."""
        with self.store.transaction() as db:
            deleted = crud.delete_user(db, user_id)
        if deleted:
            logger.info(f"Deleted account '{user_id}' and all owned data.")
        return deleted


@dataclass
class Services:
    store: Store
    auth: AuthService
    ledger: CreditLedger
    archive: MediaArchive
    generation: GenerationOrchestrator
    image_client: ImageEditClient

    def close(self) -> None:
        self.image_client.close()
        self.store.close()


def build_services(store: Store, image_client: Optional[ImageEditClient] = None) -> Services:
    """Wires every component to one open store."""
    store.open()
    image_client = image_client or ImageEditClient()
    ledger = CreditLedger(store)
    archive = MediaArchive(store)
    return Services(
        store=store,
        auth=AuthService(store),
        ledger=ledger,
        archive=archive,
        generation=GenerationOrchestrator(archive, image_client, ledger=ledger),
        image_client=image_client,
    )
