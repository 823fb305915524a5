"""Field normalizer: alias tables between canonical token fields and wire keys.

Every store shape gets a FieldMap: for each canonical field, the aliases
it may appear under, in priority order. Reads take the first present
alias; writes reuse whichever alias the entry already has, else the
first one. That keeps each peer file in its own naming style.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

CANONICAL_FIELDS = ("access", "refresh", "expires", "scopes", "account_id", "id_token")


def now_ms() -> int:
    return int(time.time() * 1000)


def first_present(entry: dict, aliases: Iterable[str]) -> Any:
    """Value of the first alias that is present and not None.

    >>> first_present({"access_token": "a"}, ("access", "access_token"))
    'a'
    >>> first_present({"access": None, "access_token": "b"}, ("access", "access_token"))
    'b'
    """
    for key in aliases:
        value = entry.get(key)
        if value is not None:
            return value
    return None


def resolve_key(entry: dict, aliases: tuple[str, ...]) -> str:
    """Key to write: an alias already in the entry, else the first alias.

    >>> resolve_key({"access_token": "x"}, ("access", "access_token"))
    'access_token'
    >>> resolve_key({}, ("access", "access_token"))
    'access'
    """
    for key in aliases:
        if key in entry:
            return key
    return aliases[0]


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def _as_scopes(value: Any) -> Optional[list[str]]:
    if isinstance(value, list):
        return [str(s) for s in value]
    if isinstance(value, str):
        return value.split()
    return None


@dataclass(frozen=True)
class FieldMap:
    """Alias table for one store shape.

    Attributes:
        aliases: canonical field name -> wire aliases (first is preferred).
        expiry_in_seconds: The store keeps expiry as epoch seconds.
        fill_missing_expiry: On write, an unknown expiry becomes now - 1 s
            so consumers treat it as expired instead of missing.
    """

    aliases: dict[str, tuple[str, ...]]
    expiry_in_seconds: bool = False
    fill_missing_expiry: bool = False
    write_fields: tuple[str, ...] = field(default=("access", "refresh", "expires"))

    def read(self, entry: Optional[dict]) -> dict:
        """Project an entry onto canonical fields (missing -> None)."""
        out = {name: None for name in CANONICAL_FIELDS}
        if not isinstance(entry, dict):
            return out
        for name, aliases in self.aliases.items():
            value = first_present(entry, aliases)
            if value is None:
                continue
            if name == "expires":
                value = _as_int(value)
                if value is not None and self.expiry_in_seconds:
                    value *= 1000
            elif name == "scopes":
                value = _as_scopes(value)
            elif not isinstance(value, str) or not value:
                value = None
            out[name] = value
        return out

    def write(self, entry: Optional[dict], tokens: dict, now: Optional[int] = None) -> dict:
        """Return a copy of entry with canonical tokens written back.

        Fields in write_fields are always written (None included, expiry
        possibly filled). Other mapped fields are written only when set.
        """
        result = dict(entry or {})
        for name, aliases in self.aliases.items():
            value = tokens.get(name)
            if name == "expires":
                if value is None and self.fill_missing_expiry:
                    value = (now if now is not None else now_ms()) - 1000
                if value is not None and self.expiry_in_seconds:
                    value = int(value) // 1000
            if value is None and name not in self.write_fields:
                continue
            result[resolve_key(result, aliases)] = value
        return result


# Canonical multi-account entries and the OpenAI sections of peer files.
OPENAI_ENTRY = FieldMap(
    aliases={
        "access": ("access", "access_token"),
        "refresh": ("refresh", "refresh_token"),
        "expires": ("expires", "expires_at"),
        "account_id": ("accountId", "account_id"),
        "id_token": ("idToken", "id_token"),
    },
)

# Canonical Claude entries (~/.claude-accounts.json).
CLAUDE_ENTRY = FieldMap(
    aliases={
        "access": ("oauthToken", "oauth_token", "accessToken", "access_token", "access"),
        "refresh": (
            "oauthRefreshToken", "oauth_refresh_token", "refreshToken",
            "refresh_token", "refresh",
        ),
        "expires": ("oauthExpiresAt", "oauth_expires_at", "expiresAt", "expires_at", "expires"),
        "scopes": ("oauthScopes", "oauth_scopes", "scopes"),
    },
)

# Codex CLI auth.json "tokens" section; expires_at is epoch seconds.
CODEX_CLI_TOKENS = FieldMap(
    aliases={
        "access": ("access_token", "access"),
        "refresh": ("refresh_token", "refresh"),
        "expires": ("expires_at",),
        "account_id": ("account_id", "accountId"),
        "id_token": ("id_token", "idToken"),
    },
    expiry_in_seconds=True,
    fill_missing_expiry=True,
)

# Claude Code .credentials.json "claudeAiOauth" section.
CLAUDE_CODE_OAUTH = FieldMap(
    aliases={
        "access": ("accessToken", "access_token"),
        "refresh": ("refreshToken", "refresh_token"),
        "expires": ("expiresAt", "expires_at"),
        "scopes": ("scopes",),
    },
)

# OpenCode / pi provider entries ({"type": "oauth", access, refresh, expires, ...}).
PEER_OPENAI = FieldMap(
    aliases={
        "access": ("access", "access_token"),
        "refresh": ("refresh", "refresh_token"),
        "expires": ("expires", "expires_at"),
        "account_id": ("accountId", "account_id"),
    },
    fill_missing_expiry=True,
)

PEER_CLAUDE = FieldMap(
    aliases={
        "access": ("access", "access_token", "accessToken"),
        "refresh": ("refresh", "refresh_token", "refreshToken"),
        "expires": ("expires", "expires_at", "expiresAt"),
        "scopes": ("scopes",),
    },
)
