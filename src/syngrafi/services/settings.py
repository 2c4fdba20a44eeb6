"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

from ..ai.prompts import (
    DEFAULT_DELAY_MS,
    DEFAULT_MAX_LENGTH,
    DEFAULT_MIN_DOCUMENT_LENGTH,
    DEFAULT_NUM_SUGGESTIONS,
    DEFAULT_PAUSE_THRESHOLD_MS,
    DEFAULT_REWRITE_PROMPT,
    DEFAULT_VARIATION_PROMPTS,
)
from ..utils.file_io import write_text

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "MAX_RECENT_FILES",
    "PROVIDER_CHOICES",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".syngrafi"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_SECRET_FIELDS: Mapping[str, str] = {
    "api_key": "api_key_ciphertext",
    "gemini_api_key": "gemini_api_key_ciphertext",
}
_ENV_PREFIX = "SYNGRAFI_"
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
MAX_RECENT_FILES = 5
PROVIDER_CHOICES: tuple[str, ...] = ("openai", "gemini")


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    provider: str = "openai"
    api_key: str = ""
    gemini_api_key: str = ""
    model: str = "gpt-4o"
    base_url: str = "https://api.openai.com/v1"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    organization: str | None = None
    temperature: float | None = None
    max_output_tokens: int | None = None
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    autocomplete_delay_ms: int = DEFAULT_DELAY_MS
    num_suggestions: int = DEFAULT_NUM_SUGGESTIONS
    autocomplete_max_length: int = DEFAULT_MAX_LENGTH
    typing_pause_threshold_ms: int = DEFAULT_PAUSE_THRESHOLD_MS
    min_document_length: int = DEFAULT_MIN_DOCUMENT_LENGTH
    variation_prompts: list[str] = field(default_factory=lambda: list(DEFAULT_VARIATION_PROMPTS))
    general_style_prompt: str = ""
    ai_references: str = ""
    default_rewrite_prompt: str = DEFAULT_REWRITE_PROMPT
    discard_stale_suggestions: bool = False
    suggestion_timeout: float | None = None
    history_limit: int = 500
    recent_files: list[str] = field(default_factory=list)
    last_open_file: str | None = None
    debug_logging: bool = False

    def as_preferences(self) -> Dict[str, Any]:
        """Return the camelCase preference mapping consumed by the completion pipeline."""

        return {
            "autocompleteDelay": self.autocomplete_delay_ms,
            "numSuggestions": self.num_suggestions,
            "autocompleteMaxLength": self.autocomplete_max_length,
            "typingPauseThreshold": self.typing_pause_threshold_ms,
            "minDocumentLength": self.min_document_length,
            "variationPrompts": list(self.variation_prompts),
            "generalStylePrompt": self.general_style_prompt,
            "aiReferences": self.ai_references,
            "defaultRewritePrompt": self.default_rewrite_prompt,
            "discardStaleSuggestions": self.discard_stale_suggestions,
            "suggestionTimeout": self.suggestion_timeout,
        }

    def with_recent_file(self, path: str | Path) -> Settings:
        """Return a copy with ``path`` moved to the front of the recent-files list."""

        entry = str(path)
        recent = [entry] + [item for item in self.recent_files if item != entry]
        return replace(self, recent_files=recent[:MAX_RECENT_FILES], last_open_file=entry)

    @property
    def active_api_key(self) -> str:
        return self.gemini_api_key if self.provider == "gemini" else self.api_key


class SecretVault:
    """Encrypts and decrypts API keys with a Fernet key stored beside the settings."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def strategy(self) -> str:
        return self.name

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8"))
        return f"{self.name}:{token.decode('ascii')}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            payload = prefix
        elif prefix != self.name:
            raise ValueError(f"Unsupported secret backend: {prefix}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        write_text(self._key_path, key.decode("ascii"))
        if os.name != "nt":  # pragma: no cover - POSIX only
            os.chmod(self._key_path, 0o600)
        LOGGER.info("Created settings encryption key at %s", self._key_path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply CLI and environment overrides."""

        settings = self.load_stored()
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")
        settings = self._apply_env_overrides(settings)
        if settings.provider not in PROVIDER_CHOICES:
            LOGGER.warning("Unknown provider %r; falling back to %s", settings.provider, PROVIDER_CHOICES[0])
            settings = replace(settings, provider=PROVIDER_CHOICES[0])
        return settings

    def load_stored(self) -> Settings:
        """Return exactly what is persisted, migrating legacy payloads on the way."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            secrets: Dict[str, str] = {}
            for field_name, cipher_field in _SECRET_FIELDS.items():
                plaintext, migrated = self._decrypt_secret(
                    payload.pop(cipher_field, None), payload.pop(field_name, None), field_name
                )
                needs_migration = needs_migration or migrated
                if plaintext:
                    secrets[field_name] = plaintext
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if secrets:
                settings = replace(settings, **secrets)
            LOGGER.debug("Settings loaded from %s", self._path)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:  # pragma: no cover - read-only settings dir
                LOGGER.warning("Failed to migrate settings payload: %s", exc)
        return settings

    def remember_recent_file(self, path: str | Path) -> Settings:
        """Move ``path`` to the front of the persisted recent-files list.

        Only stored values are written back; one-run CLI and environment
        overrides never reach the settings file.
        """

        updated = self.load_stored().with_recent_file(path)
        self.save(updated)
        return updated

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with an atomic replace."""

        write_text(self._path, json.dumps(self._serialize(settings), indent=2, sort_keys=True))
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        for field_name, cipher_field in _SECRET_FIELDS.items():
            secret = data.pop(field_name, "") or ""
            if secret:
                data[cipher_field] = self._vault.encrypt(secret)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not hold a JSON object", self._path)
            return {}
        return payload

    def _decrypt_secret(
        self, ciphertext: str | None, legacy_plaintext: str | None, field_name: str
    ) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt %s: %s", field_name, exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext %s; migrating to encrypted storage.", field_name)
            return legacy_plaintext, True
        return "", False

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, (field_name, kind) in _env_fields().items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                overrides[field_name] = _ENV_PARSERS[kind](raw.strip())
            except ValueError:
                LOGGER.warning("Ignoring %s=%r: expected %s", env_name, raw, kind)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


_ENV_PARSERS: Mapping[str, Callable[[str], Any]] = {
    "str": str,
    "bool": lambda raw: raw.lower() in _TRUE_VALUES,
    "int": lambda raw: int(raw, 10),
    "float": float,
}


def _env_fields() -> Dict[str, tuple[str, str]]:
    """Map ``SYNGRAFI_<FIELD>`` to ``(field, kind)`` for every scalar settings field.

    List-valued fields (recent files, variation prompts) have no environment form.
    """

    table: Dict[str, tuple[str, str]] = {}
    for item in fields(Settings):
        kind = str(item.type).replace("| None", "").strip()
        if kind in _ENV_PARSERS:
            table[_ENV_PREFIX + item.name.upper()] = (item.name, kind)
    return table


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - set(_SECRET_FIELDS)
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
