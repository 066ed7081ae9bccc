"""Configuration helpers for the knowledge capture workflow."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from importlib import import_module
from pathlib import Path
from typing import Optional

DEFAULT_STORAGE_MAX_BYTES = 5 * 1024 * 1024


class StorageBackend(str, Enum):
    """Available persistence backends."""

    JSON = "json"
    REDIS = "redis"

    @classmethod
    def from_string(
        cls,
        backend: str | None,
        default: Optional["StorageBackend"] = None,
    ) -> "StorageBackend":
        """Normalize arbitrary user input into a valid backend."""
        if not backend:
            if default is None:
                raise ValueError("Storage backend is required.")
            return default
        normalized = backend.strip().lower()
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        if default is not None:
            return default
        raise ValueError(f"Unsupported storage backend: {backend}")


@dataclass(slots=True)
class ModelSettings:
    """Holds model-related configuration for the runtime."""

    provider: str
    model: str
    endpoint: Optional[str]
    api_key: Optional[str]
    api_version: Optional[str]

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


@dataclass(slots=True)
class AppSettings:
    """Top-level application settings loaded from environment variables."""

    model: ModelSettings
    language: str
    data_dir: Path
    output_dir: Path
    storage_backend: StorageBackend
    redis_url: Optional[str]
    storage_max_bytes: int
    ai_max_attempts: int
    ai_retry_backoff: float
    finalize_step_delay: float
    pdf_font_path: Optional[Path]
    otlp_endpoint: Optional[str]

    @classmethod
    def load(cls) -> "AppSettings":
        """Load settings from the environment or .env file.

        A missing API key is not an error: the gateway falls back to
        canned content instead of calling the model.
        """
        _ensure_dotenv()
        provider = os.getenv("KSYNC_MODEL_PROVIDER", "openai")
        model = os.getenv("KSYNC_MODEL", "gpt-4o-mini")
        endpoint = _optional_env("KSYNC_MODEL_ENDPOINT")
        api_key = _optional_env("KSYNC_API_KEY") or _optional_env("API_KEY")
        api_version = _optional_env("KSYNC_MODEL_API_VERSION")
        language = os.getenv("KSYNC_LANGUAGE", "en").strip().lower() or "en"
        data_dir = Path(os.getenv("KSYNC_DATA_DIR", "data"))
        output_dir = Path(os.getenv("KSYNC_OUTPUT_DIR", "outputs"))
        backend_raw = _optional_env("KSYNC_STORAGE_BACKEND")
        try:
            storage_backend = (
                StorageBackend.from_string(backend_raw)
                if backend_raw
                else StorageBackend.JSON
            )
        except ValueError as exc:
            raise RuntimeError(str(exc)) from exc
        redis_url = _optional_env("KSYNC_REDIS_URL")
        if storage_backend is StorageBackend.REDIS and not redis_url:
            raise RuntimeError(
                "KSYNC_REDIS_URL is required when KSYNC_STORAGE_BACKEND=redis"
            )
        storage_max_bytes = _int_env(
            "KSYNC_STORAGE_MAX_BYTES", DEFAULT_STORAGE_MAX_BYTES, minimum=1
        )
        ai_max_attempts = _int_env("KSYNC_AI_MAX_ATTEMPTS", 3, minimum=1)
        ai_retry_backoff = _float_env("KSYNC_AI_RETRY_BACKOFF", 1.0)
        finalize_step_delay = _float_env("KSYNC_FINALIZE_STEP_DELAY", 0.8)
        font_raw = _optional_env("KSYNC_PDF_FONT")
        return cls(
            model=ModelSettings(
                provider=provider,
                model=model,
                endpoint=endpoint,
                api_key=api_key,
                api_version=api_version,
            ),
            language=language,
            data_dir=data_dir,
            output_dir=output_dir,
            storage_backend=storage_backend,
            redis_url=redis_url,
            storage_max_bytes=storage_max_bytes,
            ai_max_attempts=ai_max_attempts,
            ai_retry_backoff=ai_retry_backoff,
            finalize_step_delay=finalize_step_delay,
            pdf_font_path=Path(font_raw) if font_raw else None,
            otlp_endpoint=_optional_env("KSYNC_OTLP_ENDPOINT"),
        )


def _optional_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _int_env(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number") from exc
    if value < 0:
        raise RuntimeError(f"{name} must not be negative")
    return value


def _ensure_dotenv() -> None:
    """Load dotenv variables and provide a helpful error if missing."""

    try:
        dotenv_module = import_module("dotenv")
    except ModuleNotFoundError as exc:  # pragma: no cover - declared dep
        raise RuntimeError(
            "python-dotenv is required. Install with `pip install "
            "python-dotenv`."
        ) from exc

    load_dotenv = getattr(dotenv_module, "load_dotenv")
    load_dotenv()
