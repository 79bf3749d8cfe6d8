"""
Generation orchestrator.

A request moves Validating -> InFlight(k of N) -> Completed | PartialFailure |
TotalFailure. Credits are held before any network call and settled afterwards:
slots that produced nothing are refunded, and the whole hold is released on
total failure, cancellation or a persistence error.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Union

from . import config
from .ai_core import CancellationToken, ImageEditClient, to_base64_payload
from .archive import MediaArchive
from .errors import (
    GenerationCancelled,
    GenerationError,
    InsufficientCredits,
    InvalidGenerationRequest,
    TotalGenerationFailure,
    UserNotFound,
)
from .ledger import CreditLedger
from .prompts import prompt_for_slot
from .schemas import HistoryEntry, PromptStyle

logger = logging.getLogger(__name__)


class GenerationStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class SlotOutcome:
    slot: int
    image: Optional[str] = None
    error: Optional[GenerationError] = None

    @property
    def ok(self) -> bool:
        return self.image is not None


@dataclass
class GenerationResult:
    images: List[str]
    history: HistoryEntry
    requested: int
    failures: List[GenerationError] = field(default_factory=list)

    @property
    def history_id(self) -> str:
        return self.history.id

    @property
    def produced(self) -> int:
        return len(self.images)

    @property
    def status(self) -> GenerationStatus:
        if self.produced == self.requested:
            return GenerationStatus.COMPLETED
        return GenerationStatus.PARTIAL_FAILURE


ProgressCallback = Callable[[SlotOutcome], None]


class GenerationOrchestrator:
    def __init__(
        self,
        archive: MediaArchive,
        client: ImageEditClient,
        ledger: Optional[CreditLedger] = None,
        parallelism: int = config.GENERATION_PARALLELISM,
        max_image_bytes: int = config.MAX_IMAGE_BYTES,
    ):
        self.archive = archive
        self.client = client
        self.ledger = ledger
        self.parallelism = max(1, parallelism)
        self.max_image_bytes = max_image_bytes

    def generate(
        self,
        user_id: str,
        source_image: Union[str, bytes, None],
        count: int,
        *,
        style: Optional[PromptStyle] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationResult:
        """
        Produces up to ``count`` edited variations of source_image, persists the
        successes as one history entry and returns them in slot order.

        Raises InvalidGenerationRequest / ImageTooLarge / InsufficientCredits before
        any network call, TotalGenerationFailure when no slot succeeds, and
        GenerationCancelled when cancel_token fires (nothing is persisted or charged).
        """
        # --- Validating ---
        if not source_image:
            raise InvalidGenerationRequest("No source image provided")
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidGenerationRequest(f"Requested image count must be a positive integer, got {count!r}")
        if not self.archive.user_exists(user_id):
            raise UserNotFound(user_id)
        self._check_balance(user_id, count)

        payload = to_base64_payload(source_image, self.max_image_bytes)
        token = cancel_token or CancellationToken()
        if token.cancelled:
            raise GenerationCancelled("Generation cancelled before start")

        held = self._hold_credits(user_id, count)
        logger.info(f"Generation started: user '{user_id}', {count} slot(s), parallelism {self.parallelism}.")

        # --- InFlight ---
        try:
            outcomes = self._run_slots(payload, count, style, token, on_progress)
            if token.cancelled:
                raise GenerationCancelled("Generation cancelled")

            images = [outcome.image for outcome in outcomes if outcome.ok]
            failures = [outcome.error for outcome in outcomes if not outcome.ok]
            if not images:
                raise TotalGenerationFailure(count, failures)

            history = self.archive.record_generation(user_id, images)
        except Exception as e:
            self._release_credits(user_id, held, f"generation refund: {type(e).__name__}")
            raise

        self._release_credits(user_id, held - len(images) if held else 0,
                              f"generation refund: {count - len(images)} of {count} failed")
        result = GenerationResult(images=images, history=history, requested=count, failures=failures)
        logger.info(f"Generation {result.status.value}: {result.produced}/{count} image(s), history '{result.history_id}'.")
        return result

    # --- credits ---

    def _check_balance(self, user_id: str, count: int) -> None:
        # Checked before any URL fetch; the hold re-checks atomically.
        if self.ledger is None:
            return
        balance = self.ledger.get_balance(user_id)
        if balance < count:
            raise InsufficientCredits(user_id, balance, count)

    def _hold_credits(self, user_id: str, count: int) -> int:
        if self.ledger is None:
            return 0
        self.ledger.deduct_credits(user_id, count, reason=f"generation: {count} image(s)")
        return count

    def _release_credits(self, user_id: str, amount: int, reason: str) -> None:
        if self.ledger is None or amount <= 0:
            return
        try:
            self.ledger.refund_credits(user_id, amount, reason=reason)
        except Exception as e:
            logger.critical(f"Failed to refund {amount} credit(s) to user '{user_id}' ({reason}): {e}", exc_info=True)
            raise

    # --- slots ---

    def _run_slots(
        self,
        payload: str,
        count: int,
        style: Optional[PromptStyle],
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> List[SlotOutcome]:
        outcomes: List[SlotOutcome] = []

        if self.parallelism == 1 or count == 1:
            for slot in range(count):
                if token.cancelled:
                    break
                outcome = self._run_slot(slot, count, payload, style, token)
                outcomes.append(outcome)
                self._notify(on_progress, outcome)
            return outcomes

        with ThreadPoolExecutor(max_workers=min(self.parallelism, count), thread_name_prefix="generation-slot") as pool:
            futures = [
                pool.submit(self._run_slot, slot, count, payload, style, token)
                for slot in range(count)
            ]
            for future in futures:
                outcome = future.result()
                outcomes.append(outcome)
                self._notify(on_progress, outcome)
        return outcomes

    def _run_slot(
        self,
        slot: int,
        count: int,
        payload: str,
        style: Optional[PromptStyle],
        token: CancellationToken,
    ) -> SlotOutcome:
        if token.cancelled:
            return SlotOutcome(slot, error=GenerationCancelled("Generation cancelled", slot=slot))
        prompt = prompt_for_slot(slot, style)
        try:
            image = self.client.edit_image(payload, prompt, slot=slot, cancel_token=token)
        except GenerationCancelled as e:
            logger.info(f"Slot {slot + 1}/{count} cancelled.")
            return SlotOutcome(slot, error=e)
        except GenerationError as e:
            logger.error(f"Error generating image {slot + 1}/{count}: {e}")
            return SlotOutcome(slot, error=e)
        logger.info(f"Slot {slot + 1}/{count} produced an image.")
        return SlotOutcome(slot, image=image)

    def _notify(self, on_progress: Optional[ProgressCallback], outcome: SlotOutcome) -> None:
        if on_progress is None:
            return
        try:
            on_progress(outcome)
        except Exception as e:
            logger.error(f"Progress observer failed for slot {outcome.slot}: {e}", exc_info=True)
