# backend/services/processing_status.py
"""
Processing Status Tracker

Keeps the current pipeline stage per job so a polling client can show
progress. State lives in memory in an explicitly owned tracker object; it is
not persisted and resets on restart.

Stage order:
    idle -> uploading -> parsing_resumes -> creating_candidates ->
    generating_embeddings -> semantic_matching -> portfolio_analysis -> complete
`error` is reachable from any stage. `complete` and `error` are terminal:
a new run must call `start_run`, which re-initializes `started_at`.
"""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel

import config
from services.errors import StatusTransitionError

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PARSING_RESUMES = "parsing_resumes"
    CREATING_CANDIDATES = "creating_candidates"
    GENERATING_EMBEDDINGS = "generating_embeddings"
    SEMANTIC_MATCHING = "semantic_matching"
    PORTFOLIO_ANALYSIS = "portfolio_analysis"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_ORDER = [
    Stage.IDLE,
    Stage.UPLOADING,
    Stage.PARSING_RESUMES,
    Stage.CREATING_CANDIDATES,
    Stage.GENERATING_EMBEDDINGS,
    Stage.SEMANTIC_MATCHING,
    Stage.PORTFOLIO_ANALYSIS,
    Stage.COMPLETE,
]

TERMINAL_STAGES = {Stage.COMPLETE, Stage.ERROR}

FIRST_STAGE = Stage.UPLOADING


class Progress(BaseModel):
    current: int
    total: int


class ProcessingStage(BaseModel):
    stage: Stage = Stage.IDLE
    message: str = "No active processing"
    progress: Optional[Progress] = None
    startedAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    error: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProcessingStatusTracker:
    """
    Keyed store of pipeline stages with explicit run lifecycle.

    - `start_run` opens a run (the only way to reset a key)
    - `update` moves forward through STAGE_ORDER
    - `complete` / `fail` end the run
    - terminal entries are evicted `ttl_seconds` after they finished
    - `exclusive(key)` / `exclusive_async(key)` serialize pipeline runs for
      the same key (threads and coroutines respectively)
    """

    def __init__(self, ttl_seconds: Optional[float] = None):
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else config.STATUS_TTL_SECONDS)
        self._entries: Dict[str, ProcessingStage] = {}
        self._last_started: Dict[str, datetime] = {}
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]; dropped when the count reaches 0
        self._run_locks: Dict[str, List] = {}
        self._async_run_locks: Dict[str, List] = {}

    def _checkout_lock(self, locks: Dict[str, List], key: str, factory: Callable):
        with self._guard:
            entry = locks.get(key)
            if entry is None:
                entry = locks[key] = [factory(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin_lock(self, locks: Dict[str, List], key: str) -> None:
        with self._guard:
            entry = locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del locks[key]

    def lock_count(self) -> int:
        """Number of keys that currently have a holder or a waiter."""
        with self._guard:
            return len(self._run_locks) + len(self._async_run_locks)

    @contextmanager
    def exclusive(self, key: str) -> Iterator[None]:
        """Hold write access for `key` from a worker thread."""
        lock = self._checkout_lock(self._run_locks, key, threading.Lock)
        try:
            with lock:
                yield
        finally:
            self._checkin_lock(self._run_locks, key)

    @asynccontextmanager
    async def exclusive_async(self, key: str) -> AsyncIterator[None]:
        """
        Hold write access for `key` from a coroutine.

        Waiting happens on the event loop, so queued runs never occupy
        executor threads that the active run needs.
        """
        lock = self._checkout_lock(self._async_run_locks, key, asyncio.Lock)
        try:
            async with lock:
                yield
        finally:
            self._checkin_lock(self._async_run_locks, key)

    def start_run(self, key: str, message: str = "Starting upload") -> ProcessingStage:
        """
        Begin a fresh run for `key`, overwriting any previous state.

        The new `startedAt` is strictly later than the previous run's.
        """
        with self._guard:
            now = _now()
            previous = self._last_started.get(key)
            if previous is not None and now <= previous:
                now = previous + timedelta(microseconds=1)
            self._last_started[key] = now

            status = ProcessingStage(
                stage=FIRST_STAGE,
                message=message,
                startedAt=now,
                updatedAt=now,
            )
            self._entries[key] = status

        logger.info("[%s] %s: %s", key, status.stage.value, message)
        return status.model_copy()

    def update(
        self,
        key: str,
        stage: Stage,
        message: str,
        current: Optional[int] = None,
        total: Optional[int] = None,
    ) -> ProcessingStage:
        """
        Advance `key` to `stage`. Staying on the same stage updates progress.

        Raises:
            StatusTransitionError: no active run, the run already ended, or the
                stage would move backwards
        """
        stage = Stage(stage)
        if stage is Stage.ERROR:
            return self.fail(key, message)
        if stage is Stage.COMPLETE:
            return self.complete(key, message)

        with self._guard:
            existing = self._active(key)
            if STAGE_ORDER.index(stage) < STAGE_ORDER.index(existing.stage):
                raise StatusTransitionError(
                    f"Cannot move {key} from {existing.stage.value} back to {stage.value}"
                )

            progress = Progress(current=current, total=total) if total is not None else None
            status = existing.model_copy(update={
                "stage": stage,
                "message": message,
                "progress": progress,
                "updatedAt": _now(),
            })
            self._entries[key] = status

        suffix = f" ({current}/{total})" if total is not None else ""
        logger.info("[%s] %s: %s%s", key, stage.value, message, suffix)
        return status.model_copy()

    def complete(self, key: str, message: str = "Processing complete") -> ProcessingStage:
        with self._guard:
            existing = self._active(key)
            now = _now()
            status = existing.model_copy(update={
                "stage": Stage.COMPLETE,
                "message": message,
                "progress": None,
                "updatedAt": now,
                "completedAt": now,
            })
            self._entries[key] = status

        logger.info("[%s] complete: %s", key, message)
        return status.model_copy()

    def fail(self, key: str, error: str) -> ProcessingStage:
        """
        Move `key` to the terminal error stage from any non-terminal stage.

        Raises:
            StatusTransitionError: the run already ended
        """
        with self._guard:
            existing = self._entries.get(key)
            if existing is not None and existing.stage in TERMINAL_STAGES:
                raise StatusTransitionError(
                    f"Run for {key} already ended ({existing.stage.value}); start a new run"
                )
            now = _now()
            status = ProcessingStage(
                stage=Stage.ERROR,
                message=f"Error: {error}",
                startedAt=existing.startedAt if existing else now,
                updatedAt=now,
                completedAt=now,
                error=error,
            )
            self._entries[key] = status

        logger.error("[%s] error: %s", key, error)
        return status.model_copy()

    def get(self, key: str) -> ProcessingStage:
        """Current status for `key`; a missing key reads as idle."""
        self.evict_expired()
        with self._guard:
            status = self._entries.get(key)
            return status.model_copy() if status else ProcessingStage()

    def clear(self, key: str) -> None:
        with self._guard:
            self._entries.pop(key, None)

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        """Drop terminal entries that finished more than `ttl` ago."""
        now = now or _now()
        with self._guard:
            expired = [
                key for key, status in self._entries.items()
                if status.stage in TERMINAL_STAGES
                and status.completedAt is not None
                and now - status.completedAt > self.ttl
            ]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Evicted %d finished processing statuses", len(expired))
        return len(expired)

    def _active(self, key: str) -> ProcessingStage:
        existing = self._entries.get(key)
        if existing is None:
            raise StatusTransitionError(f"No active run for {key}; call start_run first")
        if existing.stage in TERMINAL_STAGES:
            raise StatusTransitionError(
                f"Run for {key} already ended ({existing.stage.value}); start a new run"
            )
        return existing


# Singleton instance
_tracker_instance: Optional[ProcessingStatusTracker] = None


def get_processing_tracker() -> ProcessingStatusTracker:
    """Get or create the process-wide tracker."""
    global _tracker_instance
    if _tracker_instance is None:
        _tracker_instance = ProcessingStatusTracker()
    return _tracker_instance


def reset_processing_tracker() -> None:
    """Reset the singleton instance (useful for testing)."""
    global _tracker_instance
    _tracker_instance = None
