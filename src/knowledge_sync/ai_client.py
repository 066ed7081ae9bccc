"""Thin wrappers around Microsoft Agent Framework chat completion clients.

This module centralizes the integration with the Microsoft Agent Framework
(MAF) so the rest of the application can stay framework-agnostic. It loads
the client implementation for the configured provider at runtime and
translates provider failures into two categories the gateway cares about:
authentication problems, which are never retried, and everything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib import import_module
from typing import Any, Dict, Iterable, List, Optional

import openai
from agent_framework import ChatMessage as MAFChatMessage, Role

from .config import ModelSettings

_AUTH_STATUS_CODES = {401, 403}


def _coerce_role(role: str) -> Role:
    try:
        return Role(role)
    except ValueError as exc:
        raise ValueError(
            "Unsupported role for MAF chat message: {role}".format(role=role)
        ) from exc


@dataclass(slots=True)
class ChatMessage:
    """Simple representation of a chat message compatible with this app."""

    role: str
    content: str


class MAFIntegrationError(RuntimeError):
    """Raised when the MAF client cannot be initialized."""


class AIRequestError(RuntimeError):
    """Raised when a completion call fails for a potentially transient reason."""


class AIAuthenticationError(AIRequestError):
    """Raised when the provider rejects the configured credentials."""


def is_authentication_failure(exc: BaseException) -> bool:
    """Walk the exception chain looking for an auth or permission failure."""

    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(
            current,
            (openai.AuthenticationError, openai.PermissionDeniedError),
        ):
            return True
        status = getattr(current, "status_code", None)
        if isinstance(status, int) and status in _AUTH_STATUS_CODES:
            return True
        current = current.__cause__ or current.__context__
    return False


class MAFChatClient:
    """Wrapper that dispatches chat completion calls through MAF clients."""

    def __init__(self, settings: ModelSettings) -> None:
        self._settings = settings
        self._client = self._create_client(settings)

    @property
    def model(self) -> str:
        return self._settings.model

    @staticmethod
    def _create_client(settings: ModelSettings):
        provider = settings.provider.lower()
        try:
            if provider in {"azure-openai", "azure_openai", "azure"}:
                module = import_module("agent_framework.azure")
                client_cls = getattr(module, "AzureOpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    deployment_name=settings.model,
                    endpoint=settings.endpoint,
                    api_version=settings.api_version,
                )
            if provider in {"openai", "oai"}:
                module = import_module("agent_framework.openai")
                client_cls = getattr(module, "OpenAIChatClient")
                return client_cls(
                    api_key=settings.api_key,
                    model_id=settings.model,
                    base_url=settings.endpoint,
                )
        except ModuleNotFoundError as exc:  # pragma: no cover - MAF runtime
            missing = exc.name or "a required dependency"
            raise MAFIntegrationError(
                "Microsoft Agent Framework dependency '{missing}' is missing. "
                "Reinstall the project dependencies (e.g. `pip install -e .`)."
                .format(missing=missing)
            ) from exc
        raise MAFIntegrationError(
            f"Unsupported MAF provider '{settings.provider}'."
        )

    @staticmethod
    def _merge_consecutive_roles(
        messages: Iterable[ChatMessage],
    ) -> List[ChatMessage]:
        """Combine adjacent messages that share the same role.

        Chat templates expect user/assistant roles to alternate, so a
        transcript followed by an instruction from the same role is merged
        into one message.
        """

        merged: List[ChatMessage] = []
        for message in messages:
            if merged and merged[-1].role == message.role:
                previous = merged[-1]
                previous.content = (
                    f"{previous.content}\n\n{message.content}".strip()
                )
                continue
            merged.append(
                ChatMessage(role=message.role, content=message.content)
            )
        return merged

    async def complete(
        self,
        messages: Iterable[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Any = None,
    ) -> ChatMessage:
        """Execute a chat completion call through the underlying MAF client.

        ``response_format`` takes a pydantic model class to request
        schema-constrained JSON output.
        """

        merged_messages = self._merge_consecutive_roles(messages)
        payload: List[MAFChatMessage] = [
            MAFChatMessage(role=_coerce_role(msg.role), text=msg.content)
            for msg in merged_messages
        ]
        options: Dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["max_tokens"] = max_tokens
        if response_format is not None:
            options["response_format"] = response_format
        try:
            response = await self._client.get_response(
                messages=payload,
                **options,
            )
        except Exception as exc:  # noqa: BLE001 - classified and re-raised
            if is_authentication_failure(exc):
                raise AIAuthenticationError(
                    f"Model provider rejected the credentials: {exc}"
                ) from exc
            raise AIRequestError(f"Model request failed: {exc}") from exc
        return ChatMessage(role="assistant", content=response.text or "")
