"""Translate OpenAI-style chat requests into backend conversation requests."""

from __future__ import annotations

import logging
import string
from typing import List, Optional

from config import AppConfig
from errors import GatewayError, TokenAcquisitionError
from models import BackendMessage, ChatRequest, NormalizedRequest
from token_provider import TokenProvider

log = logging.getLogger("gateway")

REDUCED_MODEL_PREFIX = "gpt-3.5"
FULL_MODEL_PREFIX = "gpt-4"
FULL_MODEL_BASE = "gpt-4"
PLUGINS_MODEL = "gpt-4-plugins"
REDUCED_MODEL_ALIAS = "text-davinci-002-render-sha"

# "gpt-4-32k": the character after "gpt-4-" is the capacity variant
_CAPACITY_POSITION = 6

# The backend has no "system" author
ROLE_MAP = {"system": "critic"}


def resolve_backend_model(
    model: str,
    plugin_ids: Optional[List[str]] = None,
    default_model: str = REDUCED_MODEL_ALIAS,
) -> str:
    """Map a caller model name onto a backend model slug."""
    if plugin_ids:
        return PLUGINS_MODEL
    if model.startswith(REDUCED_MODEL_PREFIX):
        return REDUCED_MODEL_ALIAS
    if model.startswith(FULL_MODEL_PREFIX):
        if len(model) > _CAPACITY_POSITION and model[_CAPACITY_POSITION] in string.digits:
            return FULL_MODEL_BASE
        return model
    return default_model


def map_role(role: str) -> str:
    return ROLE_MAP.get(role, role)


async def acquire_token(token_provider: Optional[TokenProvider], puid: str) -> Optional[str]:
    """Ask the provider for a token; a configured provider that fails aborts the call."""
    if token_provider is None:
        return None
    try:
        return await token_provider.get_token(puid)
    except GatewayError:
        raise
    except Exception as e:
        raise TokenAcquisitionError(f"Failed to obtain anti-automation token: {type(e).__name__}: {e}") from e


async def normalize_chat_request(
    chat_request: ChatRequest,
    puid: str,
    config: AppConfig,
    token_provider: Optional[TokenProvider] = None,
) -> NormalizedRequest:
    """
    Build the backend request for a chat call.

    Raises TokenAcquisitionError before anything is sent upstream when a
    configured token provider cannot produce a token.
    """
    token = await acquire_token(token_provider, puid)

    model = resolve_backend_model(chat_request.model, chat_request.plugin_ids, config.default_model)
    messages = [BackendMessage(role=map_role(t.role), text=t.content) for t in chat_request.messages]

    log.debug(
        "Normalized request model=%r -> %r turns=%d plugins=%s token=%s",
        chat_request.model,
        model,
        len(messages),
        bool(chat_request.plugin_ids),
        bool(token),
    )

    return NormalizedRequest(
        messages=messages,
        model=model,
        history_and_training_disabled=config.disable_history,
        arkose_token=token,
        plugin_ids=list(chat_request.plugin_ids) if chat_request.plugin_ids else None,
    )
