"""OAuth refresh-token exchange for both providers.

OpenAI takes a form-encoded body; Claude takes JSON. Each call has a
hard wall-clock timeout on top of httpx's per-phase timeouts, and can
be cancelled like any other coroutine.
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

from codex_quota.config import (
    CLAUDE_CLIENT_ID,
    CLAUDE_REFRESH_BUFFER_MS,
    CLAUDE_TOKEN_URL,
    OAUTH_TIMEOUT_SECONDS,
    OPENAI_CLIENT_ID,
    OPENAI_REFRESH_BUFFER_MS,
    OPENAI_TOKEN_URL,
    Provider,
)
from codex_quota.errors import RefreshError, RefreshTimeoutError
from codex_quota.jwt import extract_account_id
from codex_quota.models import TokenSet

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


def is_expiring(provider: Provider, expires: Optional[int], now: Optional[int] = None) -> bool:
    """Whether a token should be refreshed before use.

    OpenAI treats an unknown expiry as expiring; Claude does not.

    >>> is_expiring(Provider.OPENAI, None)
    True
    >>> is_expiring(Provider.CLAUDE, None)
    False
    >>> is_expiring(Provider.CLAUDE, 1_000_000, now=1_000_000 - 60_000)
    True
    >>> is_expiring(Provider.OPENAI, 1_000_000, now=1_000_000 - 120_000)
    False
    """
    now = int(time.time() * 1000) if now is None else now
    if not expires:
        return provider is Provider.OPENAI
    buffer = OPENAI_REFRESH_BUFFER_MS if provider is Provider.OPENAI else CLAUDE_REFRESH_BUFFER_MS
    return expires <= now + buffer


def _request_kwargs(provider: Provider, refresh_token: str) -> dict:
    if provider is Provider.OPENAI:
        return {
            "url": OPENAI_TOKEN_URL,
            "data": {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": OPENAI_CLIENT_ID,
            },
            "headers": {"Content-Type": "application/x-www-form-urlencoded"},
        }
    return {
        "url": CLAUDE_TOKEN_URL,
        "json": {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": CLAUDE_CLIENT_ID,
        },
        "headers": {"Content-Type": "application/json"},
    }


async def refresh_tokens(
    provider: Provider,
    refresh_token: Optional[str],
    *,
    timeout: float = OAUTH_TIMEOUT_SECONDS,
) -> TokenSet:
    """Exchange a refresh token for a new access token.

    Returns a TokenSet with ``refresh`` falling back to the input when
    the provider does not rotate it. Raises RefreshError on any HTTP or
    payload failure and RefreshTimeoutError when ``timeout`` elapses.
    """
    name = provider.value
    if not refresh_token:
        raise RefreshError(name, message=f"{name} account has no refresh token")

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await asyncio.wait_for(
                client.post(**_request_kwargs(provider, refresh_token)), timeout
            )
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        logger.warning("%s token refresh timed out", name)
        raise RefreshTimeoutError(name, timeout) from exc
    except httpx.HTTPError as exc:
        logger.warning("%s token refresh transport error: %s", name, exc)
        raise RefreshError(name, message=f"{name} token refresh failed: {exc}") from exc

    if resp.status_code != 200:
        body = resp.text or ""
        if resp.status_code == 400 and "invalid_grant" in body:
            logger.warning("%s refresh token rejected (invalid_grant)", name)
        elif resp.status_code == 429:
            logger.warning("%s token endpoint rate limited the refresh", name)
        else:
            logger.warning("%s token refresh returned HTTP %s", name, resp.status_code)
        raise RefreshError(name, resp.status_code, body)

    try:
        payload = resp.json()
    except ValueError as exc:
        raise RefreshError(name, resp.status_code, resp.text or "", "token response is not JSON") from exc

    access = payload.get("access_token") if isinstance(payload, dict) else None
    if not access:
        raise RefreshError(name, resp.status_code, message=f"{name} token response has no access_token")

    expires_in = payload.get("expires_in")
    if not isinstance(expires_in, (int, float)) or isinstance(expires_in, bool):
        if provider is Provider.OPENAI:
            raise RefreshError(name, resp.status_code, message="token response has no expires_in")
        expires_in = DEFAULT_EXPIRES_IN

    tokens = TokenSet(
        access=access,
        refresh=payload.get("refresh_token") or refresh_token,
        expires=int(time.time() * 1000) + int(expires_in * 1000),
    )
    if provider is Provider.OPENAI:
        tokens.account_id = extract_account_id(access)
        tokens.id_token = payload.get("id_token") or None
    elif isinstance(payload.get("scope"), str):
        tokens.scopes = payload["scope"].split()
    logger.info("%s token refreshed", name)
    return tokens
