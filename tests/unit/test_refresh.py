"""Tests for codex_quota.refresh token exchange."""

import asyncio
from unittest import mock
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import make_jwt, now_ms

from codex_quota.config import CLAUDE_TOKEN_URL, OPENAI_TOKEN_URL, Provider
from codex_quota.errors import RefreshError, RefreshTimeoutError
from codex_quota.refresh import is_expiring, refresh_tokens


def _client(status_code=200, payload=None, text="", side_effect=None):
    mock_resp = MagicMock(status_code=status_code, text=text)
    mock_resp.json.return_value = payload
    mock_client = mock.AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = mock_resp
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = False
    return mock_client


def _run(provider, client, refresh_token="R", **kwargs):
    with mock.patch("codex_quota.refresh.httpx.AsyncClient", return_value=client):
        return asyncio.run(refresh_tokens(provider, refresh_token, **kwargs))


class TestIsExpiring:

    def test_buffers(self):
        now = 10_000_000
        assert is_expiring(Provider.OPENAI, now + 59_000, now=now) is True
        assert is_expiring(Provider.OPENAI, now + 61_000, now=now) is False
        assert is_expiring(Provider.CLAUDE, now + 4 * 60_000, now=now) is True
        assert is_expiring(Provider.CLAUDE, now + 6 * 60_000, now=now) is False

    def test_unknown_expiry(self):
        assert is_expiring(Provider.OPENAI, None) is True
        assert is_expiring(Provider.CLAUDE, None) is False


class TestRefreshTokens:

    def test_openai_form_body(self):
        access = make_jwt("acct-new")
        client = _client(payload={"access_token": access, "refresh_token": "R2",
                                  "expires_in": 3600, "id_token": "idt"})
        before = now_ms()

        tokens = _run(Provider.OPENAI, client)

        kwargs = client.post.call_args.kwargs
        assert kwargs["url"] == OPENAI_TOKEN_URL
        assert kwargs["data"]["grant_type"] == "refresh_token"
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert tokens.access == access
        assert tokens.refresh == "R2"
        assert tokens.account_id == "acct-new"
        assert tokens.id_token == "idt"
        assert tokens.expires >= before + 3_600_000

    def test_claude_json_body_and_defaults(self):
        client = _client(payload={"access_token": "CA", "scope": "a b"})
        before = now_ms()

        tokens = _run(Provider.CLAUDE, client, refresh_token="CR")

        kwargs = client.post.call_args.kwargs
        assert kwargs["url"] == CLAUDE_TOKEN_URL
        assert kwargs["json"]["refresh_token"] == "CR"
        assert tokens.refresh == "CR"
        assert tokens.scopes == ["a", "b"]
        assert tokens.expires >= before + 3_600_000

    def test_http_error_carries_status_and_snippet(self):
        client = _client(status_code=400, text='{"error": "invalid_grant"}' + "x" * 500)
        with pytest.raises(RefreshError) as excinfo:
            _run(Provider.OPENAI, client)
        assert excinfo.value.status == 400
        assert len(excinfo.value.body_snippet) == 200
        assert excinfo.value.context() == {"provider": "openai", "status": 400}

    def test_openai_requires_expires_in(self):
        client = _client(payload={"access_token": "A", "refresh_token": "R"})
        with pytest.raises(RefreshError, match="expires_in"):
            _run(Provider.OPENAI, client)

    def test_missing_access_token(self):
        client = _client(payload={"refresh_token": "R", "expires_in": 10})
        with pytest.raises(RefreshError, match="access_token"):
            _run(Provider.CLAUDE, client)

    def test_timeout(self):
        client = _client(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(RefreshTimeoutError):
            _run(Provider.CLAUDE, client)

    def test_transport_error(self):
        client = _client(side_effect=httpx.ConnectError("down"))
        with pytest.raises(RefreshError, match="down"):
            _run(Provider.OPENAI, client)

    def test_no_refresh_token(self):
        with pytest.raises(RefreshError, match="no refresh token"):
            asyncio.run(refresh_tokens(Provider.OPENAI, None))
