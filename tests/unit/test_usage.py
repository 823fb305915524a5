"""Tests for usage parsing and concurrent probing."""

import asyncio
from unittest import mock
from unittest.mock import MagicMock

from conftest import now_ms, write_json

from codex_quota.config import Provider
from codex_quota.errors import RefreshError
from codex_quota.sync import SyncCoordinator
from codex_quota.usage import collect_usage, parse_claude_usage, parse_openai_usage


def test_parse_openai_usage():
    payload = {
        "plan_type": "pro",
        "rate_limit": {
            "primary_window": {"used_percent": 30, "reset_after_seconds": 600},
            "secondary_window": {"used_percent": 90, "reset_at": 1_700_000_000},
        },
    }
    windows, plan = parse_openai_usage(payload)
    assert plan == "pro"
    assert [(w.name, w.percent_left) for w in windows] == [("Session", 70.0), ("Weekly", 10.0)]
    assert windows[0].reset_after_seconds == 600
    assert windows[1].resets_at == "1700000000"


def test_parse_claude_usage_fraction_and_percent():
    payload = {
        "five_hour": {"utilization": 0.25, "resets_at": "2026-01-01T00:00:00Z"},
        "seven_day": {"utilization": 80},
        "seven_day_opus": None,
    }
    windows = parse_claude_usage(payload)
    assert [(w.name, w.percent_left) for w in windows] == [("Session", 75.0), ("Weekly", 20.0)]


def test_parse_tolerates_garbage():
    assert parse_openai_usage({}) == ([], None)
    assert parse_claude_usage({"five_hour": "nope"}) == []


def test_parse_tolerates_wrong_nested_types():
    assert parse_openai_usage({"rate_limit": "unavailable"}) == ([], None)
    assert parse_openai_usage({"rate_limit": [1, 2], "plan_type": 3}) == ([], None)
    assert parse_openai_usage({"usage": "n/a"}) == ([], None)
    assert parse_openai_usage(["not", "an", "object"]) == ([], None)
    assert parse_claude_usage({"usage": ["x"]}) == []
    assert parse_claude_usage("nope") == []


def _http(responses):
    """AsyncClient mock whose get() returns the queued responses by auth header."""
    mock_client = mock.AsyncMock()

    async def get(url, headers):
        status, payload = responses[headers["Authorization"]]
        resp = MagicMock(status_code=status, text="")
        resp.json.return_value = payload
        return resp

    mock_client.get.side_effect = get
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = False
    return mock_client


def test_collect_usage_isolates_failures(home, config, fake_refresher):
    """One failing account does not stop the others; order is preserved."""
    write_json(home / ".claude-accounts.json", {"accounts": [
        {"label": "ok", "oauthToken": "TOK1", "oauthExpiresAt": now_ms() + 3_600_000},
        {"label": "bad", "oauthToken": "TOK2", "oauthExpiresAt": now_ms() + 3_600_000},
        {"label": "legacy", "sessionKey": "sk"},
    ]})
    coord = SyncCoordinator(Provider.CLAUDE, config, refresher=fake_refresher())
    client = _http({
        "Bearer TOK1": (200, {"five_hour": {"utilization": 10}}),
        "Bearer TOK2": (500, {}),
    })

    with mock.patch("codex_quota.usage.httpx.AsyncClient", return_value=client):
        reports = asyncio.run(collect_usage(coord, coord.accounts.load_all()))

    assert [r.label for r in reports] == ["ok", "bad", "legacy"]
    assert reports[0].success and reports[0].windows[0].percent_left == 90.0
    assert not reports[1].success and "500" in reports[1].error
    assert not reports[2].success


def test_collect_usage_reports_refresh_failure(home, config, fake_refresher):
    write_json(home / ".codex-accounts.json", {"accounts": [
        {"label": "old", "accountId": "a", "access": "X", "refresh": "R", "expires": now_ms() - 1},
    ]})
    refresher = fake_refresher(error=RefreshError("openai", 401, "expired"))
    coord = SyncCoordinator(Provider.OPENAI, config, refresher=refresher)

    with mock.patch("codex_quota.usage.httpx.AsyncClient", return_value=_http({})):
        reports = asyncio.run(collect_usage(coord, coord.accounts.load_all()))

    assert reports[0].success is False
    assert "HTTP 401" in reports[0].error


def test_collect_usage_survives_malformed_payload(home, config, fake_refresher):
    """A wrongly-shaped response yields an empty report, not a crash."""
    write_json(home / ".codex-accounts.json", {"accounts": [
        {"label": "odd", "accountId": "a1", "access": "X1", "refresh": "R1",
         "expires": now_ms() + 3_600_000},
        {"label": "fine", "accountId": "a2", "access": "X2", "refresh": "R2",
         "expires": now_ms() + 3_600_000},
    ]})
    coord = SyncCoordinator(Provider.OPENAI, config, refresher=fake_refresher())
    client = _http({
        "Bearer X1": (200, {"rate_limit": "unavailable"}),
        "Bearer X2": (200, {"rate_limit": {"primary_window": {"used_percent": 10}}}),
    })

    with mock.patch("codex_quota.usage.httpx.AsyncClient", return_value=client):
        reports = asyncio.run(collect_usage(coord, coord.accounts.load_all()))

    assert [r.label for r in reports] == ["odd", "fine"]
    assert reports[0].success and reports[0].windows == []
    assert reports[1].windows[0].percent_left == 90.0
