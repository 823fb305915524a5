"""Codex CLI auth file (``~/.codex/auth.json``).

Layout::

    {"OPENAI_API_KEY": ..., "tokens": {"access_token", "refresh_token",
     "account_id", "expires_at" (seconds), "id_token"},
     "last_refresh": "<ISO-8601>", "codex_quota_label": "work"}

Sibling keys such as OPENAI_API_KEY are never touched. The
``codex_quota_label`` key records which canonical label was last
switched into the CLI.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from codex_quota.config import TRACKED_LABEL_KEY, Provider
from codex_quota.fields import CODEX_CLI_TOKENS, now_ms
from codex_quota.fsutil import write_json
from codex_quota.jwt import extract_account_id
from codex_quota.models import BaseAccount, OpenAIAccount, TokenSet
from codex_quota.stores.base import PeerStore

logger = logging.getLogger(__name__)

NATIVE_LABEL = "codex-cli"


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CodexCliStore(PeerStore):
    name = "codex-cli"

    def __init__(self, path: Path):
        super().__init__(path, Provider.OPENAI, CODEX_CLI_TOKENS)

    def get_entry(self, root: dict) -> Optional[dict]:
        return root.get("tokens")

    def set_entry(self, root: dict, entry: dict) -> dict:
        root["tokens"] = entry
        return root

    def finalize(self, root: dict, account: BaseAccount, *, forward: bool) -> dict:
        root["last_refresh"] = _iso_now()
        if forward:
            if not getattr(account, "id_token", None):
                root["tokens"].pop("id_token", None)
                root["tokens"].pop("idToken", None)
            root[TRACKED_LABEL_KEY] = account.label
        return root

    def tokens_from_entry(self, entry: Optional[dict]) -> Optional[TokenSet]:
        tokens = super().tokens_from_entry(entry)
        if tokens is not None and not tokens.account_id:
            tokens.account_id = extract_account_id(tokens.access)
        return tokens

    def read_tracked_label(self) -> Optional[str]:
        """Label marker left by the last switch, or None."""
        root = self.load()
        if root is None:
            return None
        value = root.get(TRACKED_LABEL_KEY)
        return value if isinstance(value, str) and value else None

    def load_account(self) -> Optional[OpenAIAccount]:
        """The CLI's own login as an account, used when no other exists."""
        tokens = self.read_tokens()
        if tokens is None or not tokens.access or not tokens.account_id:
            return None
        return OpenAIAccount(
            label=NATIVE_LABEL,
            source=str(self.path),
            access=tokens.access,
            refresh=tokens.refresh,
            expires=tokens.expires if tokens.expires is not None else now_ms() - 1000,
            account_id=tokens.account_id,
            id_token=tokens.id_token,
        )

    def clear_tracked_label(self, label: str, account_id: Optional[str]) -> tuple[bool, str]:
        """Drop the label marker if it names ``label`` and the same account.

        Returns (cleared, reason). Reasons: cleared, auth-missing,
        label-mismatch, account-id-mismatch.
        """
        root = self.load()
        if root is None:
            return False, "auth-missing"
        if root.get(TRACKED_LABEL_KEY) != label:
            return False, "label-mismatch"
        entry = self.get_entry(root)
        tokens = self.tokens_from_entry(entry if isinstance(entry, dict) else None)
        cli_account_id = tokens.account_id if tokens else None
        if not account_id or cli_account_id != account_id:
            return False, "account-id-mismatch"
        root.pop(TRACKED_LABEL_KEY, None)
        write_json(self.path, root)
        logger.info("Cleared tracked label '%s' from %s", label, self.path)
        return True, "cleared"
