"""Tests for the inline completion pipeline."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from syngrafi.ai.completion import (
    CompletionPipeline,
    CompletionStatus,
    DelayedTask,
    SuggestionSlots,
    TypingTracker,
)
from syngrafi.ai.providers import QuotaExceededError
from syngrafi.editor.document_model import Document
from syngrafi.editor.session import DocumentEditorCore

TEXT = "The quick brown fox jumped"


def _core(text: str = TEXT) -> DocumentEditorCore:
    core = DocumentEditorCore(Document.from_text(text))
    core.set_caret(len(text))
    return core


class _SyncProvider:
    def __init__(self) -> None:
        self.calls = 0

    def generate_completion(self, prompt: str) -> str:
        self.calls += 1
        return "over the lazy dog"


@pytest.mark.asyncio
async def test_batch_keeps_successful_siblings_when_one_request_fails(scripted_provider: Any) -> None:
    provider = scripted_provider(["over the dog", RuntimeError("boom"), "and ran away"])
    pipeline = CompletionPipeline(_core(), provider)
    statuses: list[CompletionStatus] = []
    pipeline.add_status_listener(lambda status, _message: statuses.append(status))

    result = await pipeline.fetch()

    assert result is not None
    assert result.status is CompletionStatus.READY
    assert result.published
    assert pipeline.slots.values == ("over the dog", None, "and ran away")
    assert result.errors[1] == "boom"
    assert result.available == [(0, "over the dog"), (2, "and ran away")]
    assert statuses == [CompletionStatus.GENERATING, CompletionStatus.READY]
    assert len(provider.prompts) == 3
    assert not pipeline.in_flight


@pytest.mark.asyncio
async def test_overlapping_output_is_trimmed_before_publishing(scripted_provider: Any) -> None:
    provider = scripted_provider(["fox jumped over the fence..."])
    pipeline = CompletionPipeline(_core(), provider, preferences={"numSuggestions": 1})

    await pipeline.fetch()

    assert pipeline.slots.values == ("over the fence",)


@pytest.mark.asyncio
async def test_quota_failure_publishes_nothing(scripted_provider: Any) -> None:
    provider = scripted_provider(["fine text", QuotaExceededError("429 Too Many Requests"), "more text"])
    pipeline = CompletionPipeline(_core(), provider)

    result = await pipeline.fetch()

    assert result is not None
    assert result.status is CompletionStatus.QUOTA_EXCEEDED
    assert pipeline.status is CompletionStatus.QUOTA_EXCEEDED
    assert pipeline.slots.is_empty
    assert not result.published
    assert result.suggestions[0] == "fine text"


@pytest.mark.asyncio
async def test_quota_text_from_provider_is_detected(scripted_provider: Any) -> None:
    provider = scripted_provider(["API Error: Resource has been exhausted (e.g. check quota)."])
    pipeline = CompletionPipeline(_core(), provider, preferences={"numSuggestions": 1})

    result = await pipeline.fetch()

    assert result is not None
    assert result.status is CompletionStatus.QUOTA_EXCEEDED


@pytest.mark.asyncio
async def test_all_failures_report_failed_and_blank_output_reports_empty(scripted_provider: Any) -> None:
    failing = CompletionPipeline(_core(), scripted_provider([RuntimeError("down")]))
    failed = await failing.fetch()
    assert failed is not None and failed.status is CompletionStatus.FAILED

    blank = CompletionPipeline(_core(), scripted_provider(["API Error: bad request", "", "  "]))
    empty = await blank.fetch()
    assert empty is not None and empty.status is CompletionStatus.EMPTY
    assert blank.slots.is_empty


@pytest.mark.asyncio
async def test_short_document_does_not_call_provider(scripted_provider: Any) -> None:
    provider = scripted_provider(["anything"])
    pipeline = CompletionPipeline(_core("Too short"), provider)

    assert await pipeline.fetch() is None
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_trigger_is_dropped_while_batch_in_flight(scripted_provider: Any) -> None:
    provider = scripted_provider(["one", "two", "three"])
    provider.gate = asyncio.Event()
    pipeline = CompletionPipeline(_core(), provider)

    task = pipeline.trigger()
    await asyncio.sleep(0)
    assert pipeline.in_flight
    assert await pipeline.fetch() is None

    provider.gate.set()
    result = await task
    assert result is not None and result.status is CompletionStatus.READY


@pytest.mark.asyncio
async def test_dismiss_ignores_batch_that_lands_later(scripted_provider: Any) -> None:
    provider = scripted_provider(["one", "two", "three"])
    provider.gate = asyncio.Event()
    pipeline = CompletionPipeline(_core(), provider)

    task = pipeline.trigger()
    await asyncio.sleep(0)
    pipeline.dismiss()
    assert pipeline.status is CompletionStatus.CANCELLED
    assert not pipeline.in_flight

    provider.gate.set()
    result = await task
    assert result is not None
    assert result.status is CompletionStatus.CANCELLED
    assert pipeline.slots.is_empty


@pytest.mark.asyncio
async def test_stale_batch_is_discarded_when_enabled(scripted_provider: Any) -> None:
    provider = scripted_provider(["one", "two", "three"])
    provider.gate = asyncio.Event()
    core = _core()
    pipeline = CompletionPipeline(core, provider, preferences={"discardStaleSuggestions": True})

    task = pipeline.trigger()
    await asyncio.sleep(0)
    core.type_text("!")
    provider.gate.set()
    result = await task

    assert result is not None
    assert result.status is CompletionStatus.STALE
    assert pipeline.slots.is_empty


@pytest.mark.asyncio
async def test_stale_batch_is_applied_by_default(scripted_provider: Any) -> None:
    provider = scripted_provider(["one", "two", "three"])
    provider.gate = asyncio.Event()
    core = _core()
    pipeline = CompletionPipeline(core, provider)

    task = pipeline.trigger()
    await asyncio.sleep(0)
    core.type_text("!")
    provider.gate.set()
    result = await task

    assert result is not None
    assert result.status is CompletionStatus.READY
    assert pipeline.slots.values == ("one", "two", "three")


@pytest.mark.asyncio
async def test_accept_inserts_suggestion_with_ai_provenance(scripted_provider: Any) -> None:
    core = _core()
    pipeline = CompletionPipeline(core, scripted_provider([" over the dog", "", ""]))
    await pipeline.fetch()
    caret = core.caret

    assert not pipeline.accept(1)
    assert pipeline.accept(0)

    assert core.text == TEXT + "over the dog"
    assert core.counters.ai_chars == len("over the dog")
    assert core.caret == caret + len("over the dog")
    assert pipeline.slots.is_empty


@pytest.mark.asyncio
async def test_any_document_change_clears_slots(scripted_provider: Any) -> None:
    core = _core()
    pipeline = CompletionPipeline(core, scripted_provider(["one", "two", "three"]))
    await pipeline.fetch()

    core.set_selection(0, 3)
    core.toggle_bold()

    assert pipeline.slots.is_empty
    assert pipeline.status is CompletionStatus.IDLE


@pytest.mark.asyncio
async def test_two_quick_keystrokes_schedule_a_batch(scripted_provider: Any, fake_clock: Any) -> None:
    core = _core()
    pipeline = CompletionPipeline(
        core,
        scripted_provider(["one", "two", "three"]),
        preferences={"autocompleteDelay": 0},
        clock=fake_clock,
    )

    core.type_text(" ")
    assert not pipeline.pending
    fake_clock.advance(0.2)
    core.type_text("a")
    assert pipeline.typing_count == 2
    assert pipeline.pending

    await asyncio.sleep(0.01)
    task = pipeline.current_task
    assert task is not None
    result = await task
    assert result is not None and result.status is CompletionStatus.READY


@pytest.mark.asyncio
async def test_typing_pause_restarts_the_keystroke_count(scripted_provider: Any, fake_clock: Any) -> None:
    core = _core()
    pipeline = CompletionPipeline(core, scripted_provider(["one"]), clock=fake_clock)

    core.type_text("a")
    fake_clock.advance(2.0)
    core.type_text("b")

    assert pipeline.typing_count == 1
    assert not pipeline.pending


@pytest.mark.asyncio
async def test_non_typing_edit_cancels_pending_batch(scripted_provider: Any, fake_clock: Any) -> None:
    core = _core()
    pipeline = CompletionPipeline(core, scripted_provider(["one"]), clock=fake_clock)
    core.type_text("a")
    core.type_text("b")
    assert pipeline.pending

    core.paste("pasted")

    assert not pipeline.pending
    assert pipeline.typing_count == 0
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_sync_provider_runs_in_executor() -> None:
    provider = _SyncProvider()
    pipeline = CompletionPipeline(_core(), provider, preferences={"numSuggestions": 2})

    result = await pipeline.fetch()

    assert result is not None and result.status is CompletionStatus.READY
    assert provider.calls == 2
    assert pipeline.slots.values == ("over the lazy dog", "over the lazy dog")


@pytest.mark.asyncio
async def test_per_call_timeout_marks_requests_failed(scripted_provider: Any) -> None:
    provider = scripted_provider(["slow"], delay=1.0)
    pipeline = CompletionPipeline(
        _core(), provider, preferences={"numSuggestions": 1, "suggestionTimeout": 0.01}
    )

    result = await pipeline.fetch()

    assert result is not None
    assert result.status is CompletionStatus.FAILED
    assert result.errors == ("timeout",)


def test_configure_resizes_slots(scripted_provider: Any) -> None:
    pipeline = CompletionPipeline(_core(), scripted_provider(["x"]))

    pipeline.configure({"numSuggestions": 5})

    assert len(pipeline.slots) == 5
    assert pipeline.config.num_suggestions == 5


def test_suggestion_slots_pad_and_reject_bad_indexes() -> None:
    slots = SuggestionSlots(3)
    seen: list[tuple] = []
    slots.add_listener(seen.append)

    slots.populate(["a"])

    assert slots.values == ("a", None, None)
    assert slots[0] == "a"
    with pytest.raises(IndexError):
        slots[3]
    assert slots.clear()
    assert not slots.clear()
    assert len(seen) == 2


def test_typing_tracker_counts_quick_keystrokes(fake_clock: Any) -> None:
    tracker = TypingTracker(1.0, clock=fake_clock)

    assert tracker.record_keystroke() == 1
    fake_clock.advance(0.5)
    assert tracker.record_keystroke() == 2
    fake_clock.advance(1.5)
    assert tracker.record_keystroke() == 1


def test_delayed_task_needs_running_loop() -> None:
    task = DelayedTask(lambda: None)

    assert not task.schedule(0.1)
    assert not task.pending
