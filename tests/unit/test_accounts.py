"""Tests for AccountStore: sources, labels, writes and env immutability."""

import json

import pytest
from conftest import make_jwt, read_json, write_json

from codex_quota.accounts import AccountStore, dedupe_by_email, entry_to_account
from codex_quota.config import Provider, QuotaConfig
from codex_quota.errors import ImmutableSourceError, InvalidLabelError, NotFoundError, ParseError
from codex_quota.models import OpenAIAccount, TokenSet


def _entry(label, account_id="acct-1", access="A", refresh="R", expires=9_999_999_999_999, **extra):
    return {"label": label, "accountId": account_id, "access": access,
            "refresh": refresh, "expires": expires, **extra}


# ------------------------------------------------------------------
# entry normalization
# ------------------------------------------------------------------


def test_openai_entry_needs_refresh_and_account_id():
    assert entry_to_account(Provider.OPENAI, {"label": "a", "access": "x"}, "f") is None
    account = entry_to_account(
        Provider.OPENAI, {"label": "a", "access": make_jwt("acct-j"), "refresh": "r"}, "f"
    )
    assert account.account_id == "acct-j"


def test_claude_entry_accepts_session_key():
    account = entry_to_account(Provider.CLAUDE, {"label": "s", "sessionKey": "sk", "orgId": "o"}, "f")
    assert account.session_key == "sk"
    assert account.org_id == "o"
    assert account.has_oauth is False


def test_dedupe_prefers_active_label():
    jwt = make_jwt("acct-1", email="dup@example.com")
    a = OpenAIAccount(label="first", source="f", access=jwt, refresh="r", account_id="acct-1")
    b = OpenAIAccount(label="second", source="f", access=jwt, refresh="r", account_id="acct-1")
    assert [x.label for x in dedupe_by_email([a, b])] == ["first"]
    assert [x.label for x in dedupe_by_email([a, b], "second")] == ["second"]


# ------------------------------------------------------------------
# loading
# ------------------------------------------------------------------


class TestLoading:

    def test_env_then_files(self, home):
        write_json(home / ".codex-accounts.json", {"accounts": [_entry("file")]})
        config = QuotaConfig.from_env(
            environ={"CODEX_ACCOUNTS": json.dumps([_entry("env1")])}, home=home
        )
        accounts = AccountStore(Provider.OPENAI, config).load_all()
        assert [(a.label, a.source) for a in accounts] == [
            ("env1", "env"), ("file", str(home / ".codex-accounts.json")),
        ]

    def test_bad_env_json_ignored(self, home):
        config = QuotaConfig.from_env(environ={"CODEX_ACCOUNTS": "{nope"}, home=home)
        assert AccountStore(Provider.OPENAI, config).env_accounts() == []

    def test_canonical_is_first_existing(self, home, config):
        store = AccountStore(Provider.OPENAI, config)
        assert store.canonical_path == home / ".codex-accounts.json"
        write_json(home / ".opencode" / "openai-codex-auth-accounts.json", {"accounts": []})
        assert store.canonical_path == home / ".opencode" / "openai-codex-auth-accounts.json"

    def test_native_fallback_when_nothing_configured(self, home, config):
        write_json(home / ".codex" / "auth.json", {
            "tokens": {"access_token": make_jwt("acct-cli"), "refresh_token": "R"},
        })
        accounts = AccountStore(Provider.OPENAI, config).load_all()
        assert [a.label for a in accounts] == ["codex-cli"]

    def test_require_lists_available(self, home, config):
        write_json(home / ".codex-accounts.json", {"accounts": [_entry("a"), _entry("b")]})
        with pytest.raises(NotFoundError) as excinfo:
            AccountStore(Provider.OPENAI, config).require("zzz")
        assert excinfo.value.available == ["a", "b"]


# ------------------------------------------------------------------
# writes
# ------------------------------------------------------------------


class TestWrites:

    def test_add_appends_and_validates(self, home, config):
        store = AccountStore(Provider.OPENAI, config)
        account = OpenAIAccount(label="new", source="x", access="A", refresh="R", account_id="acct-9")
        path = store.add(account)
        data = read_json(path)
        assert data["accounts"][0]["label"] == "new"
        assert data["accounts"][0]["accountId"] == "acct-9"

        with pytest.raises(InvalidLabelError):
            store.add(account)
        with pytest.raises(InvalidLabelError):
            store.add(account.model_copy(update={"label": "bad label"}))

    def test_set_active_label_must_exist(self, home, config):
        write_json(home / ".codex-accounts.json", {"accounts": [_entry("a")]})
        store = AccountStore(Provider.OPENAI, config)
        store.set_active_label("a")
        assert read_json(home / ".codex-accounts.json")["activeLabel"] == "a"
        with pytest.raises(InvalidLabelError):
            store.set_active_label("ghost")

    def test_remove_last_account_keeps_file(self, home, config):
        path = write_json(home / ".codex-accounts.json", {"activeLabel": "a", "accounts": [_entry("a")]})
        _account, written, cleared = AccountStore(Provider.OPENAI, config).remove("a")
        assert written == path
        assert cleared is True
        assert read_json(path) == {"schemaVersion": 1, "activeLabel": None, "accounts": []}

    def test_replace_tokens_keeps_entry_extras(self, home, config):
        path = write_json(home / ".codex-accounts.json", {"accounts": [_entry("a", note="hi")]})
        AccountStore(Provider.OPENAI, config).replace_tokens("a", TokenSet(access="N", refresh="NR", expires=5))
        entry = read_json(path)["accounts"][0]
        assert entry["access"] == "N"
        assert entry["refresh"] == "NR"
        assert entry["note"] == "hi"

    def test_persist_tokens_matches_by_refresh(self, home, config):
        path = write_json(home / ".codex-accounts.json", {"accounts": [
            _entry("a", access="A1", refresh="R1"),
            _entry("b", access="B1", refresh="RB"),
        ]})
        store = AccountStore(Provider.OPENAI, config)
        account = store.require("a").with_tokens(TokenSet(access="A2", refresh="R1", expires=77))

        updated = store.persist_tokens(account, TokenSet(access="A1", refresh="R1"))

        assert updated == [str(path)]
        entries = read_json(path)["accounts"]
        assert entries[0]["access"] == "A2"
        assert entries[0]["expires"] == 77
        assert entries[1]["access"] == "B1"

    def test_persist_tokens_corrupt_canonical_raises(self, home, config):
        (home / ".codex-accounts.json").write_text("{bad")
        store = AccountStore(Provider.OPENAI, config)
        account = OpenAIAccount(label="a", source="x", access="A", refresh="R", account_id="i")
        with pytest.raises(ParseError):
            store.persist_tokens(account, TokenSet(access="A", refresh="R"))
        assert (home / ".codex-accounts.json").read_text() == "{bad"


class TestEnvImmutability:
    """Env accounts are usable but never written."""

    def _store(self, home):
        config = QuotaConfig.from_env(
            environ={"CODEX_ACCOUNTS": json.dumps({"accounts": [_entry("envacct")]})}, home=home
        )
        return AccountStore(Provider.OPENAI, config)

    def test_remove_refused(self, home):
        with pytest.raises(ImmutableSourceError):
            self._store(home).remove("envacct")
        assert not (home / ".codex-accounts.json").exists()

    def test_replace_tokens_refused(self, home):
        with pytest.raises(ImmutableSourceError):
            self._store(home).replace_tokens("envacct", TokenSet(access="x", refresh="y"))

    def test_persist_is_noop(self, home):
        write_json(home / ".codex-accounts.json", {"accounts": [_entry("other", access="A", refresh="R")]})
        store = self._store(home)
        account = store.require("envacct").with_tokens(TokenSet(access="new", refresh="R"))
        assert store.persist_tokens(account, TokenSet(access="A", refresh="R")) == []
        assert read_json(home / ".codex-accounts.json")["accounts"][0]["access"] == "A"
