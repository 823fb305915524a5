"""Usage/quota probes for ChatGPT (Codex) and Claude OAuth accounts.

Probes for several accounts run concurrently; each account gets its own
report, and a failure for one account never aborts the others.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx
from pydantic import Field

from codex_quota.config import (
    ANTHROPIC_VERSION,
    CLAUDE_BETA_HEADER,
    CLAUDE_USAGE_URL,
    OPENAI_USAGE_URL,
    USAGE_TIMEOUT_SECONDS,
    Provider,
)
from codex_quota.errors import CodexQuotaError
from codex_quota.models import ClaudeAccount, OpenAIAccount, ResultModel

logger = logging.getLogger(__name__)


class UsageWindow(ResultModel):
    name: str
    percent_left: Optional[float] = None
    reset_after_seconds: Optional[int] = None
    resets_at: Optional[str] = None


class UsageReport(ResultModel):
    label: str
    provider: str
    source: str
    success: bool = True
    error: Optional[str] = None
    plan_type: Optional[str] = None
    windows: list[UsageWindow] = Field(default_factory=list)
    raw: Optional[dict] = None


def normalize_percent_used(value: Any) -> Optional[float]:
    """Utilization as 0-100; fractions in [0, 1] are scaled up.

    >>> normalize_percent_used(0.25)
    25.0
    >>> normalize_percent_used(80)
    80.0
    >>> normalize_percent_used(None) is None
    True
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    used = float(value)
    if 0 <= used <= 1:
        used *= 100
    return min(100.0, max(0.0, used))


def _window(name: str, raw: Any, *, fractional: bool) -> Optional[UsageWindow]:
    if not isinstance(raw, dict):
        return None
    remaining = raw.get("remaining_percent", raw.get("remainingPercent"))
    used = raw.get("used_percent", raw.get("usedPercent", raw.get("utilization")))
    if isinstance(remaining, (int, float)):
        left = float(remaining)
    elif fractional:
        pct = normalize_percent_used(used)
        left = None if pct is None else 100.0 - pct
    elif isinstance(used, (int, float)):
        left = 100.0 - float(used)
    else:
        left = None
    reset_after = raw.get("reset_after_seconds", raw.get("resetAfterSeconds"))
    resets_at = raw.get("resets_at", raw.get("resetsAt", raw.get("reset_at")))
    return UsageWindow(
        name=name,
        percent_left=None if left is None else min(100.0, max(0.0, left)),
        reset_after_seconds=int(reset_after) if isinstance(reset_after, (int, float)) else None,
        resets_at=str(resets_at) if resets_at is not None else None,
    )


def _section(payload: Any, key: str) -> dict:
    """payload[key] when it is an object, else payload itself (or {})."""
    if not isinstance(payload, dict):
        return {}
    inner = payload.get(key, payload)
    return inner if isinstance(inner, dict) else {}


def parse_openai_usage(payload: dict) -> tuple[list[UsageWindow], Optional[str]]:
    usage = _section(payload, "usage")
    rate_limit = usage.get("rate_limit")
    if not isinstance(rate_limit, dict):
        rate_limit = {}
    candidates = [
        ("Session", rate_limit.get("primary_window") or usage.get("primary") or usage.get("session")),
        ("Weekly", rate_limit.get("secondary_window") or usage.get("secondary") or usage.get("weekly")),
    ]
    windows = [w for w in (_window(n, r, fractional=False) for n, r in candidates) if w]
    plan = usage.get("plan_type")
    return windows, plan if isinstance(plan, str) else None


def parse_claude_usage(payload: dict) -> list[UsageWindow]:
    root = _section(payload, "usage")
    candidates = [
        ("Session", root.get("five_hour") or root.get("session")),
        ("Weekly", root.get("seven_day") or root.get("weekly")),
        ("Opus", root.get("seven_day_opus") or root.get("opus")),
        ("Sonnet", root.get("seven_day_sonnet")),
    ]
    return [w for w in (_window(n, r, fractional=True) for n, r in candidates) if w]


async def fetch_openai_usage(client: httpx.AsyncClient, account: OpenAIAccount) -> dict:
    resp = await client.get(
        OPENAI_USAGE_URL,
        headers={
            "Authorization": f"Bearer {account.access}",
            "accept": "application/json",
            "chatgpt-account-id": account.account_id or "",
            "originator": "codex_cli_rs",
        },
    )
    if resp.status_code != 200:
        raise CodexQuotaError(f"HTTP {resp.status_code}")
    return resp.json()


async def fetch_claude_usage(client: httpx.AsyncClient, account: ClaudeAccount) -> dict:
    resp = await client.get(
        CLAUDE_USAGE_URL,
        headers={
            "Authorization": f"Bearer {account.access}",
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": CLAUDE_BETA_HEADER,
        },
    )
    if resp.status_code != 200:
        raise CodexQuotaError(f"HTTP {resp.status_code}: {(resp.text or '')[:200]}")
    return resp.json()


async def probe_account(coordinator, client: httpx.AsyncClient, account) -> UsageReport:
    """Refresh if expiring, then fetch and parse usage for one account."""
    report = UsageReport(label=account.label, provider=coordinator.provider.value, source=account.source)
    if isinstance(account, ClaudeAccount) and not account.has_oauth:
        report.success = False
        report.error = "No OAuth token (session-key accounts are not supported)"
        return report
    try:
        account = await coordinator.refresh_if_expiring(account)
        if coordinator.provider is Provider.OPENAI:
            raw = await fetch_openai_usage(client, account)
            report.windows, report.plan_type = parse_openai_usage(raw)
        else:
            raw = await fetch_claude_usage(client, account)
            report.windows = parse_claude_usage(raw)
        report.raw = raw if isinstance(raw, dict) else None
    except (CodexQuotaError, httpx.HTTPError, ValueError) as exc:
        logger.warning("Usage fetch failed for %s: %s", account.label, exc)
        report.success = False
        report.error = str(exc) or type(exc).__name__
    return report


async def collect_usage(coordinator, accounts: list) -> list[UsageReport]:
    """Probe every account concurrently, preserving input order."""
    async with httpx.AsyncClient(timeout=USAGE_TIMEOUT_SECONDS) as client:
        return list(
            await asyncio.gather(*(probe_account(coordinator, client, a) for a in accounts))
        )
