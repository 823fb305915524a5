"""
Configuration for codex-quota.

Resolves every store path from the home directory and environment
overrides, and bundles them into a QuotaConfig that is passed explicitly
into accounts, adapters and coordinators.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional


class Provider(str, Enum):
    """Provider tag carried by every account."""

    OPENAI = "openai"
    CLAUDE = "claude"


# OAuth endpoints
OPENAI_TOKEN_URL = "https://auth.openai.com/oauth/token"
OPENAI_AUTHORIZE_URL = "https://auth.openai.com/oauth/authorize"
OPENAI_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
OPENAI_REDIRECT_URI = "http://localhost:1455/auth/callback"
OPENAI_SCOPE = "openid profile email offline_access"
OPENAI_CALLBACK_PORT = 1455

CLAUDE_TOKEN_URL = "https://console.anthropic.com/v1/oauth/token"
CLAUDE_AUTHORIZE_URL = "https://claude.ai/oauth/authorize"
CLAUDE_CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
CLAUDE_REDIRECT_URI = "https://console.anthropic.com/oauth/code/callback"
CLAUDE_SCOPES = "org:create_api_key user:profile user:inference"

OPENAI_USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"
CLAUDE_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
CLAUDE_BETA_HEADER = "oauth-2025-04-20"
ANTHROPIC_VERSION = "2023-06-01"

OAUTH_TIMEOUT_SECONDS = 120.0
USAGE_TIMEOUT_SECONDS = 15.0

# Refresh buffers, milliseconds
OPENAI_REFRESH_BUFFER_MS = 60 * 1000
CLAUDE_REFRESH_BUFFER_MS = 5 * 60 * 1000

# Key written into the Codex CLI auth file by switch/sync
TRACKED_LABEL_KEY = "codex_quota_label"


@dataclass(frozen=True)
class StorePaths:
    """Absolute paths of every store the engine knows about."""

    codex_accounts: tuple[Path, ...]
    claude_accounts: Path
    codex_cli: Path
    claude_code: Path
    opencode: Path
    pi: Path

    @classmethod
    def resolve(cls, home: Path, environ: Mapping[str, str]) -> "StorePaths":
        """Compute store paths. Each override wins over its default.

        >>> p = StorePaths.resolve(Path("/home/u"), {"PI_AUTH_PATH": "/tmp/pi.json"})
        >>> str(p.pi), str(p.codex_cli)
        ('/tmp/pi.json', '/home/u/.codex/auth.json')
        >>> str(StorePaths.resolve(Path("/h"), {"XDG_DATA_HOME": "/data"}).opencode)
        '/data/opencode/auth.json'
        """
        home = Path(home)
        data_home = environ.get("XDG_DATA_HOME") or str(home / ".local" / "share")
        return cls(
            codex_accounts=(
                home / ".codex-accounts.json",
                home / ".opencode" / "openai-codex-auth-accounts.json",
            ),
            claude_accounts=home / ".claude-accounts.json",
            codex_cli=_override(environ, "CODEX_AUTH_PATH", home / ".codex" / "auth.json"),
            claude_code=_override(
                environ, "CLAUDE_CREDENTIALS_PATH", home / ".claude" / ".credentials.json"
            ),
            opencode=Path(data_home) / "opencode" / "auth.json",
            pi=_override(environ, "PI_AUTH_PATH", home / ".pi" / "agent" / "auth.json"),
        )

    def canonical_paths(self, provider: Provider) -> tuple[Path, ...]:
        if provider is Provider.OPENAI:
            return self.codex_accounts
        return (self.claude_accounts,)


def _override(environ: Mapping[str, str], name: str, default: Path) -> Path:
    value = environ.get(name)
    return Path(value).expanduser() if value else default


@dataclass
class QuotaConfig:
    """Explicit configuration handed to every coordinator.

    Attributes:
        paths: Resolved store paths.
        codex_accounts_json: Raw CODEX_ACCOUNTS value, if set.
        claude_accounts_json: Raw CLAUDE_ACCOUNTS value, if set.
        no_color: Disable ANSI output in the CLI.
        access_heuristic: When neither side carries an expiry, treat a peer
            holding a different access token as fresher.
    """

    paths: StorePaths
    codex_accounts_json: Optional[str] = None
    claude_accounts_json: Optional[str] = None
    no_color: bool = False
    access_heuristic: bool = True

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        home: Optional[Path] = None,
    ) -> "QuotaConfig":
        """Build configuration from environment variables."""
        environ = os.environ if environ is None else environ
        home = Path(home) if home is not None else Path.home()
        return cls(
            paths=StorePaths.resolve(home, environ),
            codex_accounts_json=environ.get("CODEX_ACCOUNTS"),
            claude_accounts_json=environ.get("CLAUDE_ACCOUNTS"),
            no_color=bool(environ.get("NO_COLOR")),
            access_heuristic=environ.get("CODEX_QUOTA_ACCESS_HEURISTIC", "1") != "0",
        )

    def env_accounts_json(self, provider: Provider) -> Optional[str]:
        if provider is Provider.OPENAI:
            return self.codex_accounts_json
        return self.claude_accounts_json
