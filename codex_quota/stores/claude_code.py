"""Claude Code credentials (``~/.claude/.credentials.json``).

OAuth tokens live under ``claudeAiOauth``. Older builds wrote
``claude_ai_oauth``; it is read as a fallback and dropped on write.
"""

from pathlib import Path
from typing import Optional

from codex_quota.config import Provider
from codex_quota.fields import CLAUDE_CODE_OAUTH
from codex_quota.models import ClaudeAccount
from codex_quota.stores.base import PeerStore

NATIVE_LABEL = "claude-code"
SECTION_KEY = "claudeAiOauth"
LEGACY_SECTION_KEY = "claude_ai_oauth"


class ClaudeCodeStore(PeerStore):
    name = "claude-code"

    def __init__(self, path: Path):
        super().__init__(path, Provider.CLAUDE, CLAUDE_CODE_OAUTH)

    def get_entry(self, root: dict) -> Optional[dict]:
        entry = root.get(SECTION_KEY)
        if isinstance(entry, dict):
            return entry
        return root.get(LEGACY_SECTION_KEY)

    def set_entry(self, root: dict, entry: dict) -> dict:
        root[SECTION_KEY] = entry
        root.pop(LEGACY_SECTION_KEY, None)
        return root

    def load_account(self) -> Optional[ClaudeAccount]:
        """Claude Code's own login as an account, used when no other exists."""
        tokens = self.read_tokens()
        if tokens is None or not tokens.access:
            return None
        return ClaudeAccount(
            label=NATIVE_LABEL,
            source=str(self.path),
            access=tokens.access,
            refresh=tokens.refresh,
            expires=tokens.expires,
            scopes=tokens.scopes,
        )
