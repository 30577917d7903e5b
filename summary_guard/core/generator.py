"""
Artifact generation contract and summary parsing.

The generator itself is external and possibly slow; this module holds
what is independent of any particular model provider: the prompt, the
tolerant parsing of model output, and the timeout bound.
"""

import json
import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .errors import GenerationFailed, GeneratorBusy
from summary_guard.storage.models import Document

logger = logging.getLogger(__name__)

SENTIMENTS = ("positive", "neutral", "negative")

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


class ArtifactGenerator(Protocol):
    """Computes a summary artifact body from a resource's documents."""

    def generate(self, documents: Sequence[Document]) -> Dict[str, Any]:
        ...


def build_messages(documents: Sequence[Document], output_language: str) -> List[Dict[str, str]]:
    """Chat messages asking for a strict-JSON pros/cons/sentiment/topics summary."""
    lines = []
    for doc in documents:
        date = doc.created_at.date().isoformat() if doc.created_at else ""
        lines.append(f"- {doc.text}" + (f" ({date})" if date else ""))

    user = "\n".join([
        "Below are guest reviews of a single place.",
        f"Write a short summary in this language: {output_language}.",
        "Return strictly valid JSON with no prefix, suffix or explanation:",
        '{"pros": string[], "cons": string[], "sentiment": "positive|neutral|negative", "topics": string[]}',
        "",
        "Reviews:",
        "\n".join(lines) or "- (no reviews)",
    ])
    return [
        {
            "role": "system",
            "content": "You briefly summarize reviews of a place. Be concise, no repetition. Return valid JSON.",
        },
        {"role": "user", "content": user},
    ]


def extract_json(content: str) -> Optional[Any]:
    """Parse JSON from model output, unwrapping a ```json fence if present."""
    match = _FENCE.search(content or "")
    raw = match.group(1) if match else content
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [v if isinstance(v, str) else str(v) for v in value]


def empty_summary(model: str) -> Dict[str, Any]:
    return {"pros": [], "cons": [], "sentiment": "neutral", "topics": [], "model": model}


def sanitize_summary(obj: Any, model: str) -> Dict[str, Any]:
    """Coerce parsed output into a summary body; unusable output becomes an empty summary."""
    if not isinstance(obj, dict):
        return empty_summary(model)
    sentiment = obj.get("sentiment")
    return {
        "pros": _string_list(obj.get("pros")),
        "cons": _string_list(obj.get("cons")),
        "sentiment": sentiment if sentiment in SENTIMENTS else "neutral",
        "topics": _string_list(obj.get("topics")),
        "model": model,
    }


class GenerationSlot:
    """A reserved worker for one generator call.

    The worker frees the slot when the call returns, even after the caller
    stopped waiting. A slot that never carried a call is freed on exit.
    """

    def __init__(self, semaphore: threading.Semaphore):
        self._semaphore = semaphore
        self._lock = threading.Lock()
        self._submitted = False
        self._released = False

    def _release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        self._semaphore.release()

    def __enter__(self) -> "GenerationSlot":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self._submitted:
            self._release()
        return False


class BoundedGenerator:
    """Runs a generator on a worker thread and stops waiting after a timeout.

    Calls only run once a worker slot is reserved, so a call never waits
    in a queue and the timeout covers the generator call alone. When every
    worker is still busy, including with calls whose caller gave up,
    reserve() raises GeneratorBusy straight away.

    Any exception or a timeout is reported as GenerationFailed. A timed-out
    call may keep running on its worker, but its result is discarded, so
    nothing is ever written for it.
    """

    def __init__(self, generator: ArtifactGenerator, timeout_seconds: float, max_workers: int = 4):
        self.generator = generator
        self.timeout_seconds = timeout_seconds
        self.max_workers = max_workers
        self._slots = threading.BoundedSemaphore(max_workers)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="generator")
        self._closed = False

    def reserve(self, resource_id: str) -> GenerationSlot:
        """Claim a free worker without blocking.

        Raises:
            GeneratorBusy: If every worker is taken or the generator is shut down
        """
        if self._closed:
            raise GeneratorBusy("Generator is shut down")
        if not self._slots.acquire(blocking=False):
            logger.warning("No free generator worker for %s", resource_id)
            raise GeneratorBusy(f"All {self.max_workers} generator workers are busy; retry shortly")
        return GenerationSlot(self._slots)

    def generate(
        self,
        resource_id: str,
        documents: Sequence[Document],
        slot: Optional[GenerationSlot] = None,
    ) -> Dict[str, Any]:
        """Generate with a timeout, on a reserved slot or on one claimed here."""
        if slot is None:
            with self.reserve(resource_id) as own_slot:
                return self._run(resource_id, documents, own_slot)
        return self._run(resource_id, documents, slot)

    def _run(self, resource_id: str, documents: Sequence[Document], slot: GenerationSlot) -> Dict[str, Any]:
        try:
            future = self._executor.submit(self._call, slot, documents)
        except RuntimeError as e:
            raise GeneratorBusy("Generator is shut down", e) from e
        slot._submitted = True

        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeout as e:
            logger.warning("Generation for %s timed out after %.1fs", resource_id, self.timeout_seconds)
            raise GenerationFailed(
                f"Generation for '{resource_id}' timed out after {self.timeout_seconds}s", e
            ) from e
        except Exception as e:
            logger.warning("Generation for %s failed: %s", resource_id, e)
            raise GenerationFailed(f"Generation for '{resource_id}' failed: {e}", e) from e

    def _call(self, slot: GenerationSlot, documents: Sequence[Document]) -> Dict[str, Any]:
        try:
            return self.generator.generate(documents)
        finally:
            slot._release()

    def shutdown(self) -> None:
        """Refuse new calls and drop the pool without waiting for running ones."""
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
