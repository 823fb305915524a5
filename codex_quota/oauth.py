"""OAuth PKCE flows used by ``add`` and ``reauth``.

OpenAI (ChatGPT/Codex):
1. Generate PKCE verifier + challenge and a random state
2. Start a loopback callback server on 127.0.0.1:1455 (/auth/callback)
3. Open the browser to the authorize URL
4. Receive the callback, check state
5. Exchange the code for tokens (form-encoded)

Claude:
1. Generate PKCE verifier + challenge and a random state
2. Open the browser; the authorize page shows a ``code#state`` string
3. The user pastes it back (full callback URL and bare code also work)
4. Exchange the code for tokens (JSON body)

Servers and timers are released on every exit path, including timeout
and cancellation.
"""

import asyncio
import base64
import hashlib
import logging
import re
import secrets
import time
import webbrowser
from typing import Optional
from urllib.parse import parse_qs, quote, urlencode, urlparse

import httpx
from aiohttp import web

from codex_quota.config import (
    CLAUDE_AUTHORIZE_URL,
    CLAUDE_CLIENT_ID,
    CLAUDE_REDIRECT_URI,
    CLAUDE_SCOPES,
    CLAUDE_TOKEN_URL,
    OAUTH_TIMEOUT_SECONDS,
    OPENAI_AUTHORIZE_URL,
    OPENAI_CALLBACK_PORT,
    OPENAI_CLIENT_ID,
    OPENAI_REDIRECT_URI,
    OPENAI_SCOPE,
    OPENAI_TOKEN_URL,
)
from codex_quota.errors import OAuthError
from codex_quota.jwt import extract_account_id, extract_profile
from codex_quota.models import TokenSet

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/auth/callback"

SUCCESS_HTML = "<h1>Success!</h1><p>You can close this window.</p><script>window.close()</script>"
ERROR_HTML = "<h1>Error</h1><p>Authentication failed. You can close this window.</p>"


def generate_pkce() -> tuple[str, str]:
    """Generate PKCE verifier and challenge.

    >>> v, c = generate_pkce()
    >>> len(v) > 20
    True
    >>> '=' not in c
    True
    """
    verifier = secrets.token_urlsafe(32)
    challenge = base64.urlsafe_b64encode(
        hashlib.sha256(verifier.encode()).digest()
    ).rstrip(b"=").decode()
    return verifier, challenge


def generate_state() -> str:
    return secrets.token_hex(16)


def build_openai_auth_url(challenge: str, state: str) -> str:
    params = {
        "response_type": "code",
        "client_id": OPENAI_CLIENT_ID,
        "redirect_uri": OPENAI_REDIRECT_URI,
        "scope": OPENAI_SCOPE,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "state": state,
        "id_token_add_organizations": "true",
        "codex_cli_simplified_flow": "true",
        "originator": "codex_cli_rs",
    }
    # %20 rather than + for spaces, as the Codex CLI sends it
    return f"{OPENAI_AUTHORIZE_URL}?{urlencode(params, quote_via=quote)}"


def build_claude_auth_url(challenge: str, state: str) -> str:
    # code=true makes the authorize page display the code for pasting
    params = {
        "code": "true",
        "response_type": "code",
        "client_id": CLAUDE_CLIENT_ID,
        "redirect_uri": CLAUDE_REDIRECT_URI,
        "scope": CLAUDE_SCOPES,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "state": state,
    }
    return f"{CLAUDE_AUTHORIZE_URL}?{urlencode(params, quote_via=quote)}"


def parse_claude_code_state(text: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split pasted input into (code, state).

    >>> parse_claude_code_state("abc#xyz")
    ('abc', 'xyz')
    >>> parse_claude_code_state("https://console.anthropic.com/oauth/code/callback?code=c1&state=s1")
    ('c1', 's1')
    >>> parse_claude_code_state("  plain  ")
    ('plain', None)
    >>> parse_claude_code_state("")
    (None, None)
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return None, None
    if trimmed.startswith(("http://", "https://")):
        query = parse_qs(urlparse(trimmed).query)
        code = (query.get("code") or [None])[0]
        state = (query.get("state") or [None])[0]
        return code or None, state or None
    if "#" in trimmed:
        code, state = trimmed.split("#", 1)
        return code or None, state or None
    return trimmed, None


def default_label(email: Optional[str], now_ms: Optional[int] = None) -> str:
    """Label derived from the email local part, else ``account-<ms>``.

    >>> default_label("Jane.Doe+work@example.com")
    'janedoework'
    >>> default_label(None, now_ms=42)
    'account-42'
    """
    if email:
        local = re.sub(r"[^a-z0-9_-]", "", email.split("@", 1)[0].lower())
        if local:
            return local
    return f"account-{now_ms if now_ms is not None else int(time.time() * 1000)}"


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return body.get("error_description") or body.get("error") or f"HTTP {resp.status_code}"
    return f"HTTP {resp.status_code}"


async def exchange_openai_code(code: str, verifier: str) -> TokenSet:
    """Exchange an OpenAI authorization code (form-encoded)."""
    async with httpx.AsyncClient(timeout=OAUTH_TIMEOUT_SECONDS) as client:
        resp = await client.post(
            OPENAI_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": OPENAI_CLIENT_ID,
                "redirect_uri": OPENAI_REDIRECT_URI,
                "code_verifier": verifier,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    if resp.status_code != 200:
        raise OAuthError(f"Token exchange failed: {_error_message(resp)}")

    tokens = resp.json()
    for key in ("access_token", "refresh_token"):
        if not tokens.get(key):
            raise OAuthError(f"Token exchange failed: missing {key} in response")
    if not isinstance(tokens.get("expires_in"), (int, float)):
        raise OAuthError("Token exchange failed: missing or invalid expires_in in response")

    id_token = tokens.get("id_token")
    account_id = extract_account_id(tokens["access_token"]) or extract_account_id(id_token)
    if not account_id:
        raise OAuthError("Token exchange failed: no ChatGPT account id in tokens")
    return TokenSet(
        access=tokens["access_token"],
        refresh=tokens["refresh_token"],
        expires=int(time.time() * 1000) + int(tokens["expires_in"] * 1000),
        account_id=account_id,
        id_token=id_token,
    )


async def exchange_claude_code(code: str, verifier: str, state: Optional[str]) -> TokenSet:
    """Exchange a Claude authorization code (JSON body)."""
    async with httpx.AsyncClient(timeout=OAUTH_TIMEOUT_SECONDS) as client:
        resp = await client.post(
            CLAUDE_TOKEN_URL,
            json={
                "grant_type": "authorization_code",
                "code": code,
                "state": state,
                "redirect_uri": CLAUDE_REDIRECT_URI,
                "client_id": CLAUDE_CLIENT_ID,
                "code_verifier": verifier,
            },
            headers={"Content-Type": "application/json"},
        )
    if resp.status_code != 200:
        logger.error("Token exchange HTTP %s", resp.status_code)
        raise OAuthError(f"Token exchange failed: {resp.status_code} {resp.text[:200]}")

    tokens = resp.json()
    if not tokens.get("access_token"):
        raise OAuthError("Token exchange failed: missing access_token in response")
    scope = tokens.get("scope")
    return TokenSet(
        access=tokens["access_token"],
        refresh=tokens.get("refresh_token") or None,
        expires=int(time.time() * 1000) + int((tokens.get("expires_in") or 3600) * 1000),
        scopes=scope.split() if isinstance(scope, str) else CLAUDE_SCOPES.split(),
    )


class CallbackServer:
    """Loopback HTTP server that captures one OAuth redirect.

    Use as an async context manager; the server is torn down on exit.
    """

    def __init__(self, state: str, host: str = "127.0.0.1", port: int = OPENAI_CALLBACK_PORT):
        self.state = state
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None
        self._event = asyncio.Event()
        self._code: Optional[str] = None
        self._error: Optional[str] = None

    async def __aenter__(self) -> "CallbackServer":
        app = web.Application()
        app.router.add_get(CALLBACK_PATH, self._handle_callback)
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        try:
            await site.start()
        except OSError as exc:
            await self._runner.cleanup()
            self._runner = None
            raise OAuthError(
                f"Port {self.port} is in use. Close the Codex CLI login or other "
                f"codex-quota instance and try again."
            ) from exc
        logger.info("OAuth callback server listening on %s:%d", self.host, self.port)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        return False

    async def wait_for_code(self, timeout: float = OAUTH_TIMEOUT_SECONDS) -> str:
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise OAuthError(f"OAuth flow timed out ({int(timeout)}s)") from exc
        if self._error:
            raise OAuthError(self._error)
        return self._code

    async def _handle_callback(self, request: web.Request) -> web.Response:
        error = request.query.get("error")
        if error:
            desc = request.query.get("error_description", "")
            self._error = f"{error}: {desc}" if desc else error
        elif request.query.get("state") != self.state:
            self._error = "Invalid state parameter (possible CSRF attack)"
        elif not request.query.get("code"):
            self._error = "Callback did not include an authorization code"
        else:
            self._code = request.query["code"]
        self._event.set()
        html = ERROR_HTML if self._error else SUCCESS_HTML
        return web.Response(text=html, content_type="text/html")


class OpenAILoginFlow:
    """Browser login for a ChatGPT/Codex account."""

    def __init__(self):
        self.verifier, challenge = generate_pkce()
        self.state = generate_state()
        self.auth_url = build_openai_auth_url(challenge, self.state)

    async def run(self, *, open_browser: bool = True, timeout: float = OAUTH_TIMEOUT_SECONDS) -> TokenSet:
        async with CallbackServer(self.state) as server:
            if open_browser:
                webbrowser.open(self.auth_url)
                logger.info("Opened browser for OAuth authorization")
            code = await server.wait_for_code(timeout)
        return await exchange_openai_code(code, self.verifier)

    @staticmethod
    def email_for(tokens: TokenSet) -> Optional[str]:
        return extract_profile(tokens.id_token)["email"] or extract_profile(tokens.access)["email"]


class ClaudePasteFlow:
    """Paste-the-code login for a Claude account."""

    def __init__(self):
        self.verifier, challenge = generate_pkce()
        self.state = generate_state()
        self.auth_url = build_claude_auth_url(challenge, self.state)

    def open_browser(self) -> None:
        webbrowser.open(self.auth_url)

    async def complete(self, pasted: str) -> TokenSet:
        code, state = parse_claude_code_state(pasted)
        if not code:
            raise OAuthError("No authorization code provided")
        if state and state != self.state:
            raise OAuthError("OAuth state mismatch; restart the login")
        return await exchange_claude_code(code, self.verifier, state or self.state)
