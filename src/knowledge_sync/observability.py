"""Tracing helpers for the interviewer runtime."""

from __future__ import annotations

import logging
import os
from typing import Optional


logger = logging.getLogger(__name__)

_initialized = False


def _should_capture_sensitive_data() -> bool:
    raw = os.getenv("KSYNC_TRACING_CAPTURE_SENSITIVE", "false").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def initialize_tracing(*, endpoint: Optional[str] = None, enable_sensitive_data: Optional[bool] = None) -> bool:
    """Configure OpenTelemetry tracing for the agent framework chat clients."""

    global _initialized
    if _initialized:
        return False

    otlp_endpoint = (endpoint or os.getenv("KSYNC_OTLP_ENDPOINT", "")).strip()
    if not otlp_endpoint:
        logger.info("Tracing skipped because no OTLP endpoint is configured.")
        return False

    try:
        from agent_framework.observability import setup_observability

        setup_observability(
            otlp_endpoint=otlp_endpoint,
            enable_sensitive_data=enable_sensitive_data
            if enable_sensitive_data is not None
            else _should_capture_sensitive_data(),
        )
    except Exception as exc:  # noqa: BLE001 # pragma: no cover
        logger.warning("Tracing initialization failed: %s", exc)
        return False

    _initialized = True
    logger.info("Tracing initialized with OTLP endpoint %s", otlp_endpoint)
    return True
