"""Command-line entry point for the headless Syngrafi editor core."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.completion import CompletionPipeline
from .ai.providers import CompletionProvider, ProviderError, build_provider
from .editor.persistence import DocumentFormatError, open_document, save_document
from .editor.session import DocumentEditorCore
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False, console: bool = True) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force, console=console)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``syngrafi`` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("SYNGRAFI_DEBUG", default=False)
    configure_logging(debug, console=debug)

    settings_path = args.settings_path or os.environ.get("SYNGRAFI_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0
    if args.command == "stats":
        return _run_stats(Path(args.file))
    if args.command == "complete":
        return _run_complete(Path(args.file), settings, settings_store, accept=args.accept)
    parser.print_help()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="syngrafi",
        description="Inspect Syngrafi documents and request inline completions.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.syngrafi/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level to the console.")

    commands = parser.add_subparsers(dest="command")
    stats = commands.add_parser("stats", help="Print provenance counters and block counts.")
    stats.add_argument("file")
    complete = commands.add_parser("complete", help="Request one suggestion batch at the end of a document.")
    complete.add_argument("file")
    complete.add_argument(
        "--accept",
        type=int,
        metavar="N",
        help="Insert suggestion N (1-based) and save the document.",
    )
    return parser


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
def _run_stats(path: Path, *, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    try:
        loaded = open_document(path)
    except DocumentFormatError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    counters = loaded.counters
    payload = {
        "path": str(path),
        "characters": len(loaded.document),
        "ai_chars": counters.ai_chars,
        "human_chars": counters.human_chars,
        "ai_ratio": round(counters.ai_ratio, 4),
        "blocks": loaded.document.summary(),
    }
    json.dump(payload, destination, indent=2)
    destination.write("\n")
    return 0


def _run_complete(
    path: Path,
    settings: Settings,
    store: SettingsStore,
    *,
    accept: int | None = None,
    provider: CompletionProvider | None = None,
    stream: TextIO | None = None,
) -> int:
    destination = stream or sys.stdout
    try:
        loaded = open_document(path)
    except DocumentFormatError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    try:
        active_provider = provider or build_provider(settings)
    except ProviderError as exc:
        print(f"Completion provider unavailable: {exc}", file=sys.stderr)
        return 1
    if active_provider is None:
        print("No API key configured for the selected provider.", file=sys.stderr)
        return 1

    core = DocumentEditorCore(loaded.document, counters=loaded.counters, history_limit=settings.history_limit)
    core.set_caret(len(core.document))
    pipeline = CompletionPipeline(core, active_provider, preferences=settings.as_preferences())
    try:
        result = asyncio.run(_fetch(pipeline, active_provider))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Completion cancelled by user.")
        return 130
    if result is None:
        print("Document is too short for suggestions.", file=sys.stderr)
        return 1
    if not result.published:
        print(f"No suggestions ({result.status.value}).", file=sys.stderr)
        return 1

    for index, text in result.available:
        destination.write(f"{index + 1}. {text}\n")

    if accept is not None:
        if not pipeline.accept(accept - 1):
            print(f"Suggestion {accept} is not available.", file=sys.stderr)
            return 1
        save_document(path, core.document, core.counters)
        store.remember_recent_file(path.resolve())
    return 0


async def _fetch(pipeline: CompletionPipeline, provider: CompletionProvider):  # type: ignore[no-untyped-def]
    try:
        return await pipeline.fetch()
    finally:
        close = getattr(provider, "aclose", None)
        if close is not None:
            await close()


# ----------------------------------------------------------------------
# Settings overrides
# ----------------------------------------------------------------------
def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        try:
            value = json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
        if not isinstance(value, list):
            raise ValueError("List overrides must be valid JSON arrays")
        return value
    return normalized


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    for secret in ("api_key", "gemini_api_key"):
        value = payload.get(secret, "")
        if isinstance(value, str):
            payload[secret] = redact_secret(value)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("SYNGRAFI_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
