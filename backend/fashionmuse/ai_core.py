import base64
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional, Set, Union

import requests

from . import config
from .errors import (
    GenerationCancelled,
    GenerationError,
    ImageTooLarge,
    InvalidGenerationRequest,
    MalformedResponse,
    RateLimited,
    UpstreamError,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_MIME_TYPE = "image/jpeg"
SOURCE_FETCH_TIMEOUT_SECONDS = 30
DOWNLOAD_CHUNK_BYTES = 64 * 1024


class CancellationToken:
    """
    Shared cancel signal for one generation request.

    ``cancel()`` wakes every registered waiter: the in-flight HTTP attempt, a
    backoff pause, and the slot loop (which checks ``cancelled``).
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        logger.info("Generation cancellation requested.")
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Registers callback to run on cancel; returns a function that unregisters it."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def _remove_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float) -> bool:
        """Sleeps up to timeout seconds; returns True as soon as the token is cancelled."""
        return self._event.wait(timeout)


# --- Source image canonicalization ---

def estimated_decoded_size(base64_payload: str) -> int:
    return len(base64_payload) * 3 // 4


def _check_size(size_in_bytes: int, max_bytes: int) -> None:
    if size_in_bytes > max_bytes:
        raise ImageTooLarge(
            f"Image is too large ({size_in_bytes} bytes). Please use a smaller image (max {max_bytes // (1024 * 1024)}MB)."
        )


def _download_as_base64(url: str, max_bytes: int) -> str:
    """
    Streams the body of url, rejecting it as soon as the declared
    Content-Length or the bytes read so far exceed max_bytes.
    """
    response = None
    try:
        response = requests.get(url, timeout=SOURCE_FETCH_TIMEOUT_SECONDS, stream=True)
        response.raise_for_status()

        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit():
            _check_size(int(declared), max_bytes)

        content = bytearray()
        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
            content.extend(chunk)
            _check_size(len(content), max_bytes)
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to fetch source image from {url}: {e}", exc_info=True)
        raise InvalidGenerationRequest("Failed to process image", cause=e) from e
    finally:
        if response is not None:
            response.close()
    return base64.b64encode(bytes(content)).decode("ascii")


def to_base64_payload(source: Union[str, bytes, None], max_bytes: int = config.MAX_IMAGE_BYTES) -> str:
    """
    Canonical form sent upstream: a bare base64 payload with no data-URI prefix.

    Accepts a data URI, a bare base64 string, raw bytes, or an http(s) URL.
    Raises ImageTooLarge above max_bytes (decoded size).
    """
    if not source:
        raise InvalidGenerationRequest("No source image provided")

    if isinstance(source, (bytes, bytearray)):
        _check_size(len(source), max_bytes)
        return base64.b64encode(bytes(source)).decode("ascii")

    source = source.strip()
    if source.startswith(("http://", "https://")):
        return _download_as_base64(source, max_bytes)

    if source.startswith("data:"):
        _, separator, payload = source.partition(",")
        if not separator or not payload:
            raise InvalidGenerationRequest("Malformed data URI: no payload after ','")
    else:
        payload = source

    _check_size(estimated_decoded_size(payload), max_bytes)
    return payload


# --- External image-edit client ---

class ImageEditClient:
    """
    Client for the external image-edit endpoint.

    Per call: a hard wall-clock timeout per attempt, up to ``max_retries`` extra
    attempts on timeout, network failure or HTTP 5xx, with a linear backoff of
    ``backoff_seconds * attempt``. 413, 429 and malformed 200 responses are
    terminal and do not consume a retry.
    """

    def __init__(
        self,
        api_url: str = config.IMAGE_EDIT_API_URL,
        timeout: float = config.IMAGE_EDIT_TIMEOUT_SECONDS,
        max_retries: int = config.IMAGE_EDIT_MAX_RETRIES,
        backoff_seconds: float = config.IMAGE_EDIT_BACKOFF_SECONDS,
    ):
        self.api_url = api_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._abandoned: Set[Future] = set()
        self._lock = threading.Lock()

    @property
    def abandoned_requests(self) -> int:
        """Requests given up on (deadline or cancel) whose worker thread is still running."""
        with self._lock:
            return len(self._abandoned)

    def close(self) -> None:
        # Abandoned requests cannot be interrupted; they end on requests' own timeout.
        pending = self.abandoned_requests
        if pending:
            logger.warning(f"Closing image edit client with {pending} abandoned request(s) still running.")

    def _abandon(self, future: Future) -> None:
        with self._lock:
            self._abandoned.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._abandoned.discard(future)

    def edit_image(
        self,
        base64_image: str,
        prompt: str,
        *,
        slot: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Submits one prompt + image and returns the output as a data URI.
        Raises a GenerationError subclass once the retry policy gives up.
        """
        body = {
            "prompt": prompt,
            "images": [{"type": "image", "image": base64_image}],
        }
        total_attempts = self.max_retries + 1
        last_error: Optional[GenerationError] = None

        for attempt in range(1, total_attempts + 1):
            if cancel_token is not None and cancel_token.cancelled:
                raise GenerationCancelled("Generation cancelled", slot=slot, attempt=attempt)

            logger.info(f"Image edit call: slot {slot}, attempt {attempt}/{total_attempts}")
            try:
                return self._attempt(body, slot, attempt, cancel_token)
            except GenerationCancelled:
                raise
            except GenerationError as e:
                if not e.retryable:
                    logger.error(f"Image edit failed without retry: {e}")
                    raise
                last_error = e

            if attempt < total_attempts:
                delay = self.backoff_seconds * attempt
                logger.warning(f"Retryable image edit failure ({last_error}); retrying in {delay}s.")
                self._pause(delay, slot, attempt, cancel_token)

        logger.error(f"Image edit gave up after {total_attempts} attempts: {last_error}")
        raise last_error

    def _pause(self, delay: float, slot, attempt, cancel_token: Optional[CancellationToken]) -> None:
        if delay <= 0:
            return
        if cancel_token is None:
            time.sleep(delay)
        elif cancel_token.wait(delay):
            raise GenerationCancelled("Generation cancelled during backoff", slot=slot, attempt=attempt)

    def _attempt(self, body: dict, slot, attempt, cancel_token: Optional[CancellationToken]) -> str:
        try:
            response = self._post_with_deadline(body, slot, attempt, cancel_token)
        except requests.exceptions.Timeout as e:
            raise UpstreamTimeout("Request timed out", slot=slot, attempt=attempt, cause=e) from e
        except requests.exceptions.ConnectionError as e:
            raise UpstreamError("Network error", retryable=True, slot=slot, attempt=attempt, cause=e) from e
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Request failed: {e}", slot=slot, attempt=attempt, cause=e) from e
        return self._parse_response(response, slot, attempt)

    def _post_with_deadline(self, body: dict, slot, attempt, cancel_token: Optional[CancellationToken]):
        """
        Runs the POST on its own worker thread and waits for whichever comes
        first: the response, the wall-clock deadline, or cancellation. Each
        attempt gets a fresh single-thread executor, so a request abandoned
        here never holds up a later one.
        """
        wake = threading.Event()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="image-edit")
        try:
            future = executor.submit(requests.post, self.api_url, json=body, timeout=self.timeout)
        finally:
            executor.shutdown(wait=False)
        future.add_done_callback(lambda _: wake.set())
        unregister = cancel_token.add_callback(wake.set) if cancel_token is not None else (lambda: None)
        try:
            wake.wait(self.timeout)
        finally:
            unregister()

        if future.done():
            return future.result()

        self._abandon(future)
        if cancel_token is not None and cancel_token.cancelled:
            raise GenerationCancelled("Generation cancelled during request", slot=slot, attempt=attempt)
        logger.warning(f"Request timeout after {self.timeout}s (slot {slot}, attempt {attempt})")
        raise UpstreamTimeout(f"Request timed out after {self.timeout}s", slot=slot, attempt=attempt)

    def _parse_response(self, response, slot, attempt) -> str:
        status = response.status_code
        if status == 429:
            raise RateLimited("Rate limit exceeded. Please try again in a few moments.",
                              slot=slot, attempt=attempt, status_code=status)
        if status == 413:
            raise ImageTooLarge("Image too large. Please use a smaller image.",
                                slot=slot, attempt=attempt, status_code=status)
        if status >= 500:
            raise UpstreamError(f"Server error: {status} {response.text[:200]}",
                                retryable=True, slot=slot, attempt=attempt, status_code=status)
        if not 200 <= status < 300:
            raise UpstreamError(f"API error: {status} {response.text[:200]}",
                                slot=slot, attempt=attempt, status_code=status)

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse("Response body is not JSON", slot=slot, attempt=attempt,
                                    status_code=status, cause=e) from e

        image = data.get("image") if isinstance(data, dict) else None
        if not isinstance(image, dict) or not image.get("base64Data"):
            raise MalformedResponse("Invalid API response: missing image.base64Data",
                                    slot=slot, attempt=attempt, status_code=status)

        mime_type = image.get("mimeType") or DEFAULT_OUTPUT_MIME_TYPE
        return f"data:{mime_type};base64,{image['base64Data']}"
