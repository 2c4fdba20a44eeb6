"""Inline completion pipeline: debounce, concurrent fetch, cleanup and presentation.

The pipeline subscribes to :class:`~syngrafi.editor.session.DocumentEditorCore`
change events. Consecutive keystrokes arm a cancellable :class:`DelayedTask`;
when it fires, one prompt per variation is sent to the provider concurrently
and the joined results are post-processed and published to
:class:`SuggestionSlots` in one step. Accepting a slot re-enters the core
through :meth:`DocumentEditorCore.insert_suggestion`.

Everything here runs on the event loop that owns the editor core; only the
provider calls themselves leave it (awaited coroutines, or plain callables run
on the default executor).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from ..editor.provenance import EditOrigin
from ..editor.session import ChangeKind, DocumentChange, DocumentEditorCore
from ..utils.logging import batch_context
from .postprocess import is_error_output, is_quota_error, matches_quota_signature, postprocess
from .prompts import CompletionConfig, autocomplete_prompt, context_window
from .providers import CompletionProvider, ProviderError, QuotaExceededError, call_provider

__all__ = [
    "CompletionStatus",
    "BatchResult",
    "TypingTracker",
    "DelayedTask",
    "SuggestionSlots",
    "CompletionPipeline",
]

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


class CompletionStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"
    EMPTY = "empty"
    FAILED = "failed"
    QUOTA_EXCEEDED = "quota_exceeded"
    CANCELLED = "cancelled"
    STALE = "stale"


class StatusListener(Protocol):
    def __call__(self, status: CompletionStatus, message: str) -> None:
        ...


@dataclass(slots=True, frozen=True)
class BatchResult:
    """Joined outcome of one completion batch."""

    status: CompletionStatus
    suggestions: tuple[Optional[str], ...]
    errors: tuple[Optional[str], ...] = ()
    raw: tuple[Optional[str], ...] = ()
    prompts: tuple[str, ...] = ()
    caret: int = 0
    version: int = 0
    elapsed: float = 0.0
    published: bool = False

    @property
    def available(self) -> list[tuple[int, str]]:
        return [(index, text) for index, text in enumerate(self.suggestions) if text]


# ----------------------------------------------------------------------
# Debounce building blocks
# ----------------------------------------------------------------------
class TypingTracker:
    """Counts consecutive single-character insertions separated by short gaps."""

    def __init__(self, pause_threshold: float, *, clock: Clock = time.monotonic) -> None:
        self._threshold = max(0.0, float(pause_threshold))
        self._clock = clock
        self._count = 0
        self._last: float | None = None

    @property
    def count(self) -> int:
        return self._count

    @property
    def pause_threshold(self) -> float:
        return self._threshold

    def record_keystroke(self) -> int:
        now = self._clock()
        if self._last is not None and now - self._last < self._threshold:
            self._count += 1
        else:
            self._count = 1
        self._last = now
        return self._count

    def reset(self) -> None:
        self._count = 0
        self._last = None


class DelayedTask:
    """Cancellable one-shot callback on the running event loop.

    Scheduling again replaces any pending run. Callbacks returning a coroutine
    are wrapped in a task.
    """

    def __init__(self, callback: Callable[[], Any]) -> None:
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[Any] | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def task(self) -> asyncio.Task[Any] | None:
        return self._task

    def schedule(self, delay: float) -> bool:
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; delayed task not scheduled")
            return False
        self._handle = loop.call_later(max(0.0, delay), self._fire)
        return True

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        result = self._callback()
        if inspect.isawaitable(result):
            self._task = asyncio.ensure_future(result)


class SuggestionSlots:
    """Fixed-size, index-addressable suggestion set, replaced atomically."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("SuggestionSlots requires at least one slot")
        self._slots: tuple[Optional[str], ...] = (None,) * size
        self._listeners: list[Callable[[tuple[Optional[str], ...]], None]] = []

    def __len__(self) -> int:
        return len(self._slots)

    def __getitem__(self, index: int) -> Optional[str]:
        if not 0 <= index < len(self._slots):
            raise IndexError(f"Suggestion slot {index} out of range")
        return self._slots[index]

    @property
    def values(self) -> tuple[Optional[str], ...]:
        return self._slots

    @property
    def is_empty(self) -> bool:
        return not any(self._slots)

    def add_listener(self, listener: Callable[[tuple[Optional[str], ...]], None]) -> None:
        self._listeners.append(listener)

    def populate(self, values: Sequence[Optional[str]]) -> None:
        size = len(self._slots)
        padded = [value or None for value in list(values)[:size]]
        padded.extend([None] * (size - len(padded)))
        self._slots = tuple(padded)
        self._notify()

    def clear(self) -> bool:
        if self.is_empty:
            return False
        self._slots = (None,) * len(self._slots)
        self._notify()
        return True

    def resize(self, size: int) -> None:
        if size < 1:
            raise ValueError("SuggestionSlots requires at least one slot")
        self._slots = (None,) * size
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._slots)
            except Exception:  # pragma: no cover - listener bugs must not break the pipeline
                LOGGER.exception("Suggestion listener %r failed", listener)


# ----------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------
@dataclass(slots=True)
class _Batch:
    token: int
    version: int
    caret: int
    before: str
    prompts: list[str] = field(default_factory=list)
    started: float = 0.0


class CompletionPipeline:
    """Drives suggestion batches for one editor core."""

    def __init__(
        self,
        core: DocumentEditorCore,
        provider: CompletionProvider | None = None,
        *,
        preferences: Mapping[str, Any] | None = None,
        config: CompletionConfig | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._core = core
        self._provider = provider
        self._config = config or CompletionConfig.from_preferences(preferences)
        self._clock = clock
        self._slots = SuggestionSlots(self._config.num_suggestions)
        self._tracker = TypingTracker(self._config.pause_threshold_seconds, clock=clock)
        self._timer = DelayedTask(self._start_batch)
        self._status = CompletionStatus.IDLE
        self._status_listeners: list[StatusListener] = []
        self._in_flight = False
        self._batch_token = 0
        self._task: asyncio.Task[BatchResult | None] | None = None
        self._last_result: BatchResult | None = None
        self._attached = False
        self.attach()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def attach(self) -> None:
        if not self._attached:
            self._core.add_change_listener(self._on_document_change)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._core.remove_change_listener(self._on_document_change)
            self._attached = False
        self._timer.cancel()

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def set_provider(self, provider: CompletionProvider | None) -> None:
        self._provider = provider

    def configure(self, preferences: Mapping[str, Any] | CompletionConfig) -> None:
        """Reload settings; changing the suggestion count empties the slots."""

        config = (
            preferences
            if isinstance(preferences, CompletionConfig)
            else CompletionConfig.from_preferences(preferences)
        )
        if config.num_suggestions != len(self._slots):
            self._slots.resize(config.num_suggestions)
        self._tracker = TypingTracker(config.pause_threshold_seconds, clock=self._clock)
        self._config = config

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def config(self) -> CompletionConfig:
        return self._config

    @property
    def slots(self) -> SuggestionSlots:
        return self._slots

    @property
    def status(self) -> CompletionStatus:
        return self._status

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def pending(self) -> bool:
        return self._timer.pending

    @property
    def typing_count(self) -> int:
        return self._tracker.count

    @property
    def last_result(self) -> BatchResult | None:
        return self._last_result

    @property
    def current_task(self) -> asyncio.Task[Any] | None:
        return self._task or self._timer.task

    def _set_status(self, status: CompletionStatus, message: str) -> None:
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status, message)
            except Exception:  # pragma: no cover - listener bugs must not break the pipeline
                LOGGER.exception("Status listener %r failed", listener)

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------
    def _on_document_change(self, change: DocumentChange) -> None:
        if self._slots.clear():
            self._set_status(CompletionStatus.IDLE, "Suggestions cleared")
        if change.kind is ChangeKind.FORMAT:
            return
        if change.origin is EditOrigin.HUMAN and change.is_single_character_insert:
            count = self._tracker.record_keystroke()
            if count >= 2 and self._provider is not None:
                self._timer.schedule(self._config.delay_seconds)
            return
        self._tracker.reset()
        self._timer.cancel()

    def _start_batch(self) -> asyncio.Task[BatchResult | None]:
        self._task = asyncio.ensure_future(self.fetch())
        return self._task

    def trigger(self) -> asyncio.Task[BatchResult | None]:
        """Start a batch now, bypassing the keystroke counter and delay."""

        self._timer.cancel()
        return self._start_batch()

    def dismiss(self) -> None:
        """Cancel pending work; a batch already in flight is ignored when it lands."""

        self._timer.cancel()
        self._tracker.reset()
        was_active = self._in_flight or not self._slots.is_empty
        self._batch_token += 1
        self._in_flight = False
        self._slots.clear()
        if was_active:
            self._set_status(CompletionStatus.CANCELLED, "Suggestions dismissed")

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------
    async def fetch(self) -> BatchResult | None:
        """Run one batch; returns ``None`` when the batch is not started."""

        if self._in_flight:
            LOGGER.debug("Completion batch already in flight; trigger dropped")
            return None
        if self._provider is None:
            LOGGER.debug("No completion provider configured")
            return None
        text = self._core.text
        if len(text) < self._config.min_document_length:
            LOGGER.debug("Document too short for completions (%s chars)", len(text))
            return None

        self._batch_token += 1
        caret = self._core.caret
        before, after = context_window(text, caret)
        count = self._config.num_suggestions
        batch = _Batch(
            token=self._batch_token,
            version=self._core.version,
            caret=caret,
            before=text[:caret],
            prompts=[autocomplete_prompt(before, after, index, self._config) for index in range(count)],
            started=self._clock(),
        )
        self._in_flight = True
        self._set_status(CompletionStatus.GENERATING, "Generating suggestions...")
        with batch_context(batch.token):
            LOGGER.debug("Dispatching %s completion request(s) at caret %s", count, caret)
            try:
                outcomes = await asyncio.gather(
                    *(self._request(prompt) for prompt in batch.prompts), return_exceptions=True
                )
            finally:
                if batch.token == self._batch_token:
                    self._in_flight = False
            result = self._settle(batch, outcomes)
        self._last_result = result
        return result

    async def _request(self, prompt: str) -> str:
        provider = self._provider
        if provider is None:
            raise ProviderError("Provider removed while the batch was running")
        return await call_provider(provider, prompt, timeout=self._config.suggestion_timeout)

    def _settle(self, batch: _Batch, outcomes: Sequence[Any]) -> BatchResult:
        count = len(outcomes)
        suggestions: list[Optional[str]] = [None] * count
        errors: list[Optional[str]] = [None] * count
        raw_values: list[Optional[str]] = [None] * count
        quota = False
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, QuotaExceededError) or matches_quota_signature(str(outcome)):
                    quota = True
                    errors[index] = "quota"
                elif isinstance(outcome, asyncio.TimeoutError):
                    errors[index] = "timeout"
                else:
                    errors[index] = str(outcome) or type(outcome).__name__
                LOGGER.warning("Suggestion %s failed: %s", index + 1, errors[index])
                continue
            raw = str(outcome or "")
            raw_values[index] = raw
            if is_quota_error(raw):
                quota = True
                errors[index] = "quota"
                LOGGER.warning("Suggestion %s hit a quota limit: %s", index + 1, raw)
                continue
            if is_error_output(raw):
                errors[index] = raw
                LOGGER.warning("Suggestion %s returned an error: %s", index + 1, raw)
                continue
            suggestions[index] = postprocess(batch.before, raw, max_length=self._config.max_length) or None

        elapsed = self._clock() - batch.started

        def build(status: CompletionStatus, *, published: bool = False) -> BatchResult:
            return BatchResult(
                status=status,
                suggestions=tuple(suggestions),
                errors=tuple(errors),
                raw=tuple(raw_values),
                prompts=tuple(batch.prompts),
                caret=batch.caret,
                version=batch.version,
                elapsed=elapsed,
                published=published,
            )

        if batch.token != self._batch_token:
            LOGGER.debug("Discarding cancelled completion batch %s", batch.token)
            return build(CompletionStatus.CANCELLED)
        if self._config.discard_stale and self._core.version != batch.version:
            LOGGER.debug("Discarding stale completion batch %s", batch.token)
            self._set_status(CompletionStatus.STALE, "Suggestions discarded: document changed")
            return build(CompletionStatus.STALE)
        if quota:
            self._set_status(
                CompletionStatus.QUOTA_EXCEEDED, "API quota or rate limit exceeded; suggestions unavailable"
            )
            return build(CompletionStatus.QUOTA_EXCEEDED)
        if not any(suggestions):
            if all(errors):
                self._set_status(CompletionStatus.FAILED, "Suggestion request failed")
                return build(CompletionStatus.FAILED)
            self._set_status(CompletionStatus.EMPTY, "No suggestions")
            return build(CompletionStatus.EMPTY)

        self._slots.populate(suggestions)
        available = sum(1 for item in suggestions if item)
        LOGGER.info("Completion batch ready: %s/%s suggestion(s) in %.2fs", available, count, elapsed)
        self._set_status(CompletionStatus.READY, f"{available} suggestion(s) ready")
        return build(CompletionStatus.READY, published=True)

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------
    def accept(self, index: int) -> bool:
        """Insert slot ``index`` at the caret; returns ``False`` for an empty slot."""

        try:
            text = self._slots[index]
        except IndexError:
            return False
        if not text:
            return False
        self._slots.clear()
        inserted = self._core.insert_suggestion(text)
        self._tracker.reset()
        self._timer.cancel()
        if inserted:
            self._set_status(CompletionStatus.IDLE, "Suggestion inserted")
        return inserted

    async def aclose(self) -> None:
        self.detach()
        task = self.current_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
