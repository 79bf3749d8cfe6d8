import threading
from types import SimpleNamespace
from typing import Generator

import pytest

from fashionmuse.archive import MediaArchive
from fashionmuse.database import Store
from fashionmuse.errors import UpstreamError
from fashionmuse.ledger import CreditLedger
from fashionmuse.services import AuthService


class ScriptedClient:
    """
    Stand-in for ImageEditClient. outcomes[slot] is a payload to return, an
    exception to raise, or a callable taking the cancel token and returning either.
    Slots beyond the script use ``default``.
    """

    def __init__(self, outcomes=None, default=None):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def edit_image(self, base64_image, prompt, *, slot=None, cancel_token=None):
        with self._lock:
            self.calls.append(SimpleNamespace(slot=slot, prompt=prompt, image=base64_image))
        outcome = self.outcomes[slot] if slot < len(self.outcomes) else self.default
        if callable(outcome):
            outcome = outcome(cancel_token)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            raise UpstreamError("No scripted outcome", slot=slot)
        return outcome

    def close(self):
        self.closed = True


# --- Fixtures ---

@pytest.fixture
def store(tmp_path) -> Generator[Store, None, None]:
    """
    A fresh SQLite store per test, backed by a temporary file.
    """
    test_store = Store(f"sqlite:///{tmp_path / 'fashionmuse_test.db'}").open()
    yield test_store
    test_store.close()


@pytest.fixture
def auth(store) -> AuthService:
    return AuthService(store, signup_credits=10)


@pytest.fixture
def ledger(store) -> CreditLedger:
    return CreditLedger(store)


@pytest.fixture
def archive(store) -> MediaArchive:
    return MediaArchive(store)


@pytest.fixture
def alice(auth):
    return auth.sign_up("Alice", "alice@example.com", "password123")


@pytest.fixture
def scripted_client():
    return ScriptedClient
