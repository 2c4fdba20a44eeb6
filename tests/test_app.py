"""Tests covering the command-line entry point."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest

from syngrafi import app
from syngrafi.editor.document_model import Document
from syngrafi.editor.persistence import open_document, save_document
from syngrafi.editor.provenance import ProvenanceCounters
from syngrafi.services.settings import Settings, SettingsStore

TEXT = "The storm rolled over the hills"


def _write_document(path: Path, text: str = TEXT, counters: ProvenanceCounters | None = None) -> Path:
    return save_document(path, Document.from_text(text), counters or ProvenanceCounters(2, 8))


def test_coerce_cli_overrides_uses_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "num_suggestions=5",
            "discard_stale_suggestions=yes",
            "temperature=0.25",
            'variation_prompts=["Be bold"]',
            "suggestion_timeout=none",
            "model=gpt-4o-mini",
        ]
    )

    assert overrides == {
        "num_suggestions": 5,
        "discard_stale_suggestions": True,
        "temperature": 0.25,
        "variation_prompts": ["Be bold"],
        "suggestion_timeout": None,
        "model": "gpt-4o-mini",
    }


@pytest.mark.parametrize("entry", ["no-equals", "=value", "unknown_field=1", "num_suggestions=many"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_parse_bool_rejects_unknown_words() -> None:
    assert app._parse_bool("Off") is False
    with pytest.raises(ValueError):
        app._parse_bool("maybe")


def test_dump_settings_redacts_secrets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    settings_path = tmp_path / "settings.json"
    SettingsStore(settings_path).save(Settings(api_key="sk-very-secret", model="stored-model"))

    exit_code = app.main(
        ["--settings-path", str(settings_path), "--set", "num_suggestions=4", "--dump-settings"]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["settings"]["api_key"] == "sk**********et"
    assert payload["settings"]["model"] == "stored-model"
    assert payload["settings"]["num_suggestions"] == 4
    assert payload["meta"]["cli_overrides"] == ["num_suggestions"]
    assert payload["meta"]["secret_backend"] == "fernet"


def test_invalid_override_exits_with_usage_error(tmp_path: Path) -> None:
    assert app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "bogus"]) == 2


def test_stats_prints_counters_and_blocks(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    document_path = _write_document(tmp_path / "doc.html")

    exit_code = app.main(["--settings-path", str(tmp_path / "s.json"), "stats", str(document_path)])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["ai_chars"] == 2
    assert payload["human_chars"] == 8
    assert payload["ai_ratio"] == 0.2
    assert payload["characters"] == len(TEXT)
    assert payload["blocks"]["paragraphs"] == 1


def test_stats_missing_file_fails(tmp_path: Path) -> None:
    assert app.main(["--settings-path", str(tmp_path / "s.json"), "stats", str(tmp_path / "nope.html")]) == 1


def test_complete_without_api_key_fails(tmp_path: Path) -> None:
    document_path = _write_document(tmp_path / "doc.html")

    assert app.main(["--settings-path", str(tmp_path / "s.json"), "complete", str(document_path)]) == 1


def test_complete_prints_and_accepts_suggestion(tmp_path: Path, scripted_provider: Any) -> None:
    document_path = _write_document(tmp_path / "doc.html")
    store = SettingsStore(tmp_path / "s.json")
    output = io.StringIO()
    provider = scripted_provider(["and into the valley", "", "like a drum"])

    exit_code = app._run_complete(
        document_path, Settings(), store, accept=1, provider=provider, stream=output
    )

    assert exit_code == 0
    assert output.getvalue().splitlines() == ["1. and into the valley", "3. like a drum"]
    reopened = open_document(document_path)
    assert reopened.document.text == TEXT + "and into the valley"
    assert reopened.counters == ProvenanceCounters(2 + len("and into the valley"), 8)
    assert store.load().last_open_file == str(document_path.resolve())


def test_complete_reports_unavailable_suggestion(tmp_path: Path, scripted_provider: Any) -> None:
    document_path = _write_document(tmp_path / "doc.html")
    provider = scripted_provider(["only one", "", ""])

    exit_code = app._run_complete(
        document_path,
        Settings(),
        SettingsStore(tmp_path / "s.json"),
        accept=2,
        provider=provider,
        stream=io.StringIO(),
    )

    assert exit_code == 1
    assert open_document(document_path).document.text == TEXT


def test_accepting_keeps_one_run_overrides_out_of_settings_file(
    tmp_path: Path, scripted_provider: Any, monkeypatch: pytest.MonkeyPatch
) -> None:
    document_path = _write_document(tmp_path / "doc.html")
    store = SettingsStore(tmp_path / "s.json")
    store.save(Settings(model="stored-model"))
    monkeypatch.setenv("SYNGRAFI_API_KEY", "sk-env-only-secret")
    effective = store.load(overrides={"model": "one-off-model"})
    assert effective.api_key == "sk-env-only-secret"

    exit_code = app._run_complete(
        document_path,
        effective,
        store,
        accept=1,
        provider=scripted_provider(["and into the valley", "", ""]),
        stream=io.StringIO(),
    )

    assert exit_code == 0
    stored = store.load_stored()
    assert stored.model == "stored-model"
    assert stored.api_key == ""
    assert stored.last_open_file == str(document_path.resolve())
    assert "sk-env-only-secret" not in (tmp_path / "s.json").read_text(encoding="utf-8")
