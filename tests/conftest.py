"""Shared fixtures for codex-quota tests."""

import base64
import json
import time
from pathlib import Path

import pytest

from codex_quota.config import Provider, QuotaConfig


def now_ms() -> int:
    return int(time.time() * 1000)


def make_jwt(account_id="acct-x", email=None, plan_type="plus") -> str:
    """Unsigned JWT carrying the ChatGPT auth and profile claims."""
    claims = {
        "https://api.openai.com/auth": {
            "chatgpt_account_id": account_id,
            "chatgpt_plan_type": plan_type,
        }
    }
    if email:
        claims["https://api.openai.com/profile"] = {"email": email}

    def seg(obj):
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).decode().rstrip("=")

    return f"{seg({'alg': 'none'})}.{seg(claims)}.sig"


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def read_json(path: Path):
    return json.loads(Path(path).read_text(encoding="utf-8"))


class FakeRefresher:
    """Async stand-in for refresh_tokens that records its calls."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def __call__(self, provider: Provider, refresh_token):
        self.calls.append((provider, refresh_token))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def home(tmp_path):
    """Empty fake home directory."""
    h = tmp_path / "home"
    h.mkdir()
    return h


@pytest.fixture
def config(home):
    """QuotaConfig rooted at the fake home with no env overrides."""
    return QuotaConfig.from_env(environ={}, home=home)


@pytest.fixture
def paths(config):
    return config.paths


@pytest.fixture
def fake_refresher():
    def _create(result=None, error=None):
        return FakeRefresher(result=result, error=error)
    return _create

