"""Queue persistence and the exclusive lock marker."""

from __future__ import annotations

import copy
import json
import logging
import os
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol

from dt_queue.queue.contracts import dump_queue, new_queue_document, parse_queue, write_json
from dt_queue.queue.models import QueueDocument

logger = logging.getLogger(__name__)

DEFAULT_LOCK_RETRIES = 10
DEFAULT_LOCK_RETRY_DELAY_SECONDS = 0.1


class QueueStoreError(RuntimeError):
    """Persisted queue document exists but cannot be used."""


class LockUnavailable(RuntimeError):
    """Exclusive queue lock could not be obtained within the retry budget."""


class QueueStore(Protocol):
    """Persistence + lock abstraction used by the engine."""

    def load(self) -> QueueDocument:
        """Return the persisted queue or a fresh empty one."""

    def save(self, queue: QueueDocument) -> None:
        """Recompute summary and persist the full document."""

    def delete(self) -> None:
        """Remove the persisted document, tolerating absence."""

    def try_lock(self) -> bool:
        """Create the lock marker; False when another holder has it."""

    def unlock(self) -> None:
        """Remove the lock marker, tolerating absence."""


class FileQueueStore:
    """JSON document on disk plus an exclusive-create sentinel lock file."""

    def __init__(self, queue_path: Path, lock_path: Path | None = None) -> None:
        self.queue_path = queue_path
        self.lock_path = lock_path or queue_path.with_suffix(".lock")

    def load(self) -> QueueDocument:
        try:
            content = self.queue_path.read_text("utf-8")
        except FileNotFoundError:
            return new_queue_document()
        if not content.strip():
            return new_queue_document()
        try:
            return parse_queue(json.loads(content))
        except (json.JSONDecodeError, TypeError, ValueError) as error:
            raise QueueStoreError(
                f"Corrupt queue document at {self.queue_path}: {error}",
            ) from error

    def save(self, queue: QueueDocument) -> None:
        queue.recompute_summary()
        write_json(self.queue_path, dump_queue(queue))

    def delete(self) -> None:
        self.queue_path.unlink(missing_ok=True)

    def try_lock(self) -> bool:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(str(os.getpid()))
        return True

    def unlock(self) -> None:
        self.lock_path.unlink(missing_ok=True)


class InMemoryQueueStore:
    """Process-local store; documents are deep-copied on load and save."""

    def __init__(self, queue: QueueDocument | None = None) -> None:
        self._queue = copy.deepcopy(queue) if queue is not None else None
        self.locked = False
        self.save_count = 0

    def load(self) -> QueueDocument:
        if self._queue is None:
            return new_queue_document()
        return copy.deepcopy(self._queue)

    def save(self, queue: QueueDocument) -> None:
        queue.recompute_summary()
        self._queue = copy.deepcopy(queue)
        self.save_count += 1

    def delete(self) -> None:
        self._queue = None

    def try_lock(self) -> bool:
        if self.locked:
            return False
        self.locked = True
        return True

    def unlock(self) -> None:
        self.locked = False


def acquire_lock(
    store: QueueStore,
    *,
    max_retries: int = DEFAULT_LOCK_RETRIES,
    retry_delay_seconds: float = DEFAULT_LOCK_RETRY_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll `store.try_lock` at a fixed interval; raise after `max_retries` attempts."""

    for attempt in range(1, max_retries + 1):
        if store.try_lock():
            return
        logger.debug("Queue lock busy (attempt %d/%d)", attempt, max_retries)
        if attempt < max_retries:
            sleep(retry_delay_seconds)
    raise LockUnavailable(f"Could not acquire queue lock after {max_retries} attempts")


@contextmanager
def queue_lock(
    store: QueueStore,
    *,
    max_retries: int = DEFAULT_LOCK_RETRIES,
    retry_delay_seconds: float = DEFAULT_LOCK_RETRY_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[None]:
    """Hold the exclusive queue lock for the duration of the block."""

    acquire_lock(
        store,
        max_retries=max_retries,
        retry_delay_seconds=retry_delay_seconds,
        sleep=sleep,
    )
    try:
        yield
    finally:
        store.unlock()
