"""Pydantic v2 models for accounts, store snapshots and engine results."""

import time
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from codex_quota.jwt import extract_account_id, extract_profile


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Tokens and accounts
# ---------------------------------------------------------------------------


class TokenSet(BaseModel):
    """Canonical view of one credential. ``expires`` is epoch milliseconds."""

    access: Optional[str] = None
    refresh: Optional[str] = None
    expires: Optional[int] = None
    scopes: Optional[list[str]] = None
    account_id: Optional[str] = None
    id_token: Optional[str] = None

    @property
    def fingerprint(self) -> Optional[str]:
        """Refresh token if present, else access token.

        >>> TokenSet(access="a", refresh="r").fingerprint
        'r'
        >>> TokenSet(access="a").fingerprint
        'a'
        """
        return self.refresh or self.access or None

    @property
    def has_tokens(self) -> bool:
        return bool(self.access or self.refresh)


class BaseAccount(BaseModel):
    """Fields shared by both providers. Subclasses add provider identity."""

    label: str
    source: str
    access: Optional[str] = None
    refresh: Optional[str] = None
    expires: Optional[int] = None
    scopes: Optional[list[str]] = None

    @computed_field
    @property
    def is_expired(self) -> bool:
        """Expired when an expiry is known and already past."""
        return self.expires is not None and _now_ms() >= self.expires

    @property
    def is_env(self) -> bool:
        return self.source.startswith("env")

    @property
    def tokens(self) -> TokenSet:
        return TokenSet(
            access=self.access,
            refresh=self.refresh,
            expires=self.expires,
            scopes=self.scopes,
        )

    def with_tokens(self, tokens: TokenSet):
        """Copy with new access/refresh/expiry; other fields kept unless set."""
        update = {
            "access": tokens.access,
            "refresh": tokens.refresh,
            "expires": tokens.expires,
        }
        if tokens.scopes is not None:
            update["scopes"] = tokens.scopes
        return self.model_copy(update=update)


class OpenAIAccount(BaseAccount):
    """ChatGPT/Codex account. ``account_id`` is the chatgpt_account_id claim."""

    provider: Literal["openai"] = "openai"
    account_id: Optional[str] = None
    id_token: Optional[str] = None

    @property
    def tokens(self) -> TokenSet:
        return super().tokens.model_copy(
            update={"account_id": self.account_id, "id_token": self.id_token}
        )

    @property
    def email(self) -> Optional[str]:
        return (
            extract_profile(self.id_token)["email"]
            or extract_profile(self.access)["email"]
        )

    @property
    def plan_type(self) -> Optional[str]:
        return extract_profile(self.access)["plan_type"]

    def with_tokens(self, tokens: TokenSet) -> "OpenAIAccount":
        account = super().with_tokens(tokens)
        update = {}
        account_id = tokens.account_id or extract_account_id(tokens.access)
        if account_id:
            update["account_id"] = account_id
        if tokens.id_token:
            update["id_token"] = tokens.id_token
        return account.model_copy(update=update) if update else account


class ClaudeAccount(BaseAccount):
    """Claude account. OAuth tokens are optional for legacy session-key entries."""

    provider: Literal["claude"] = "claude"
    org_id: Optional[str] = None
    session_key: Optional[str] = None

    @property
    def has_oauth(self) -> bool:
        return bool(self.access)


# ---------------------------------------------------------------------------
# Engine results (camelCase when serialized for --json callers)
# ---------------------------------------------------------------------------


class ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class StoreSnapshot(ResultModel):
    """What one peer store held at read time."""

    name: str
    path: str
    exists: bool = False
    tokens: Optional[TokenSet] = None
    error: Optional[str] = None


class WriteResult(ResultModel):
    name: str
    path: str
    updated: bool = False
    skipped: bool = False
    error: Optional[str] = None


class FresherResult(ResultModel):
    fresher: bool = False
    store: Optional[StoreSnapshot] = None


class RecoveryResult(ResultModel):
    store: Optional[StoreSnapshot] = None
    reason: Optional[Literal["ambiguous", "no-stores"]] = None


class StoreComparison(ResultModel):
    name: str
    path: str
    exists: bool = False
    considered: bool = False
    matches: Optional[bool] = None
    method: Optional[Literal["refresh", "access", "account_id"]] = None


class DivergenceReport(ResultModel):
    provider: str
    active_label: Optional[str] = None
    diverged: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    migrated: bool = False
    active_account_id: Optional[str] = None
    cli_account_id: Optional[str] = None
    cli_label: Optional[str] = None
    per_store: list[StoreComparison] = Field(default_factory=list)


class SyncResult(ResultModel):
    success: bool = True
    provider: str
    dry_run: bool = False
    active_label: Optional[str] = None
    email: Optional[str] = None
    account_id: Optional[str] = None
    pulled: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class RemoveResult(ResultModel):
    success: bool = True
    provider: str
    label: str
    path: str
    active_cleared: bool = False
    marker_cleared: bool = False
    marker_reason: Optional[str] = None
