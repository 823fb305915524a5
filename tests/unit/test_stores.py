"""Tests for the peer auth file adapters."""

import json

from conftest import make_jwt, now_ms, read_json, write_json

from codex_quota.config import TRACKED_LABEL_KEY, Provider
from codex_quota.models import ClaudeAccount, OpenAIAccount, TokenSet
from codex_quota.stores import (
    ClaudeCodeStore,
    CodexCliStore,
    OpencodeStore,
    PiStore,
    peer_stores,
)


def _openai(label="work", access="A2", refresh="R2", expires=None, account_id="acct-x", id_token=None):
    return OpenAIAccount(
        label=label, source="/tmp/accounts.json", access=access, refresh=refresh,
        expires=expires, account_id=account_id, id_token=id_token,
    )


def _claude(label="work", access="CA", refresh="CR", expires=None):
    return ClaudeAccount(label=label, source="/tmp/c.json", access=access, refresh=refresh, expires=expires)


# ------------------------------------------------------------------
# Codex CLI
# ------------------------------------------------------------------


class TestCodexCliStore:

    def test_forward_write_preserves_api_key(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {
            "OPENAI_API_KEY": "sk-keep",
            "tokens": {"access_token": "A1", "refresh_token": "R1", "id_token": "old-id"},
        })
        store = CodexCliStore(path)

        result = store.write_tokens(_openai(expires=2_000_000_000_000))

        assert result.updated is True
        data = read_json(path)
        assert data["OPENAI_API_KEY"] == "sk-keep"
        assert data["tokens"]["access_token"] == "A2"
        assert data["tokens"]["refresh_token"] == "R2"
        assert data["tokens"]["expires_at"] == 2_000_000_000
        assert data["tokens"]["account_id"] == "acct-x"
        assert "id_token" not in data["tokens"]
        assert data[TRACKED_LABEL_KEY] == "work"
        assert data["last_refresh"].endswith("Z")

    def test_missing_expiry_written_as_expired(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {"tokens": {}})
        before = now_ms()
        CodexCliStore(path).write_tokens(_openai(expires=None))
        written = read_json(path)["tokens"]["expires_at"]
        assert written * 1000 < before

    def test_missing_file_skipped(self, tmp_path):
        store = CodexCliStore(tmp_path / "auth.json")
        result = store.write_tokens(_openai())
        assert result.skipped is True
        assert not store.path.exists()

    def test_create_when_asked(self, tmp_path):
        store = CodexCliStore(tmp_path / ".codex" / "auth.json")
        result = store.write_tokens(_openai(), create=True)
        assert result.updated is True
        assert read_json(store.path)["tokens"]["access_token"] == "A2"

    def test_read_fills_account_id_from_jwt(self, tmp_path):
        access = make_jwt("acct-jwt")
        path = write_json(tmp_path / "auth.json", {"tokens": {"access_token": access, "refresh_token": "R"}})
        tokens = CodexCliStore(path).read_tokens()
        assert tokens.account_id == "acct-jwt"
        assert tokens.expires is None

    def test_conditional_write_skips_other_credential(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {"tokens": {"access_token": "X", "refresh_token": "RX"}})
        result = CodexCliStore(path).write_tokens(_openai(), TokenSet(access="A1", refresh="R1"))
        assert result.updated is False
        assert read_json(path)["tokens"]["access_token"] == "X"

    def test_conditional_write_keeps_tracked_label(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {
            "tokens": {"access_token": "A1", "refresh_token": "R1"},
            TRACKED_LABEL_KEY: "other",
        })
        CodexCliStore(path).write_tokens(_openai(), TokenSet(access="A1", refresh="R1"))
        data = read_json(path)
        assert data["tokens"]["access_token"] == "A2"
        assert data[TRACKED_LABEL_KEY] == "other"

    def test_corrupt_file_reported_not_raised(self, tmp_path):
        path = tmp_path / "auth.json"
        path.write_text("{broken")
        store = CodexCliStore(path)
        result = store.write_tokens(_openai())
        assert result.error
        assert path.read_text() == "{broken"
        assert store.snapshot().error

    def test_load_account_fills_missing_expiry(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {
            "tokens": {"access_token": make_jwt("acct-1"), "refresh_token": "R"},
        })
        account = CodexCliStore(path).load_account()
        assert account.label == "codex-cli"
        assert account.account_id == "acct-1"
        assert account.expires < now_ms()

    def test_clear_tracked_label(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {
            "tokens": {"access_token": make_jwt("acct-1"), "refresh_token": "R"},
            TRACKED_LABEL_KEY: "work",
        })
        store = CodexCliStore(path)
        assert store.clear_tracked_label("home", "acct-1") == (False, "label-mismatch")
        assert store.clear_tracked_label("work", "acct-2") == (False, "account-id-mismatch")
        assert store.clear_tracked_label("work", "acct-1") == (True, "cleared")
        assert TRACKED_LABEL_KEY not in read_json(path)
        assert CodexCliStore(tmp_path / "none.json").clear_tracked_label("work", "a") == (
            False, "auth-missing",
        )


# ------------------------------------------------------------------
# OpenCode / pi
# ------------------------------------------------------------------


class TestProviderKeyedStores:

    def test_opencode_keeps_other_providers(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {
            "anthropic": {"type": "oauth", "access": "CA", "refresh": "CR", "expires": 1},
            "openai": {"type": "oauth", "access": "A1", "refresh": "R1", "expires": 1},
            "github": {"type": "api", "key": "ghp"},
        })
        OpencodeStore(path, Provider.OPENAI).write_tokens(_openai(expires=5_000))
        data = read_json(path)
        assert data["openai"] == {
            "type": "oauth", "access": "A2", "refresh": "R2", "expires": 5_000, "accountId": "acct-x",
        }
        assert data["anthropic"]["access"] == "CA"
        assert data["github"] == {"type": "api", "key": "ghp"}

    def test_pi_uses_openai_codex_key(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {})
        PiStore(path, Provider.OPENAI).write_tokens(_openai(expires=5_000))
        data = read_json(path)
        assert list(data) == ["openai-codex"]
        assert data["openai-codex"]["type"] == "oauth"

    def test_claude_entry_and_scopes(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {
            "anthropic": {"type": "oauth", "access": "CA", "refresh": "CR", "expires": 7, "scopes": ["s"]},
        })
        store = OpencodeStore(path, Provider.CLAUDE)
        assert store.read_tokens() == TokenSet(access="CA", refresh="CR", expires=7, scopes=["s"])

    def test_unknown_expiry_reads_as_none(self, tmp_path):
        path = write_json(tmp_path / "auth.json", {"openai": {"access": "A", "refresh": "R"}})
        assert OpencodeStore(path, Provider.OPENAI).read_tokens().expires is None


# ------------------------------------------------------------------
# Claude Code
# ------------------------------------------------------------------


class TestClaudeCodeStore:

    def test_write_keeps_siblings(self, tmp_path):
        path = write_json(tmp_path / ".credentials.json", {
            "claudeAiOauth": {"accessToken": "old", "refreshToken": "old-r", "subscriptionType": "max"},
            "mcpOAuth": {"server": {"token": "t"}},
        })
        ClaudeCodeStore(path).write_tokens(_claude(expires=123))
        data = read_json(path)
        assert data["claudeAiOauth"] == {
            "accessToken": "CA", "refreshToken": "CR", "expiresAt": 123, "subscriptionType": "max",
        }
        assert data["mcpOAuth"] == {"server": {"token": "t"}}

    def test_legacy_key_read_and_migrated(self, tmp_path):
        path = write_json(tmp_path / ".credentials.json", {
            "claude_ai_oauth": {"access_token": "legacy", "refresh_token": "lr"},
        })
        store = ClaudeCodeStore(path)
        assert store.read_tokens().access == "legacy"

        store.write_tokens(_claude())
        data = read_json(path)
        assert "claude_ai_oauth" not in data
        assert data["claudeAiOauth"]["access_token"] == "CA"

    def test_claude_missing_expiry_not_filled(self, tmp_path):
        path = write_json(tmp_path / ".credentials.json", {})
        ClaudeCodeStore(path).write_tokens(_claude(expires=None))
        assert json.loads(path.read_text())["claudeAiOauth"]["expiresAt"] is None

    def test_load_account(self, tmp_path):
        path = write_json(tmp_path / ".credentials.json", {
            "claudeAiOauth": {"accessToken": "CA", "refreshToken": "CR", "expiresAt": 9},
        })
        account = ClaudeCodeStore(path).load_account()
        assert account.label == "claude-code"
        assert account.has_oauth


def test_peer_order(paths):
    """OpenAI scans integrations before the Codex CLI; Claude scans Claude Code first."""
    assert [p.name for p in peer_stores(Provider.OPENAI, paths)] == ["opencode", "pi", "codex-cli"]
    assert [p.name for p in peer_stores(Provider.CLAUDE, paths)] == ["claude-code", "opencode", "pi"]
