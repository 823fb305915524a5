"""Common read-modify-write machinery for peer auth files.

An adapter knows where its provider's entry lives inside the peer's
JSON document and which FieldMap describes it. Everything else in the
file (other providers, API keys, tool settings) is carried through
untouched.
"""

import logging
from pathlib import Path
from typing import Optional

from codex_quota.config import Provider
from codex_quota.errors import CodexQuotaError
from codex_quota.fields import FieldMap, now_ms
from codex_quota.fsutil import load_json_object, write_json
from codex_quota.models import BaseAccount, StoreSnapshot, TokenSet, WriteResult
from codex_quota.token_match import matches_tokens

logger = logging.getLogger(__name__)


class PeerStore:
    """One provider's slot in one peer auth file."""

    name = "peer"

    def __init__(self, path: Path, provider: Provider, fields: FieldMap):
        self.path = Path(path)
        self.provider = provider
        self.fields = fields

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} {self.path}>"

    def exists(self) -> bool:
        return self.path.exists()

    # -- hooks -------------------------------------------------------------

    def get_entry(self, root: dict) -> Optional[dict]:
        raise NotImplementedError

    def set_entry(self, root: dict, entry: dict) -> dict:
        raise NotImplementedError

    def finalize(self, root: dict, account: BaseAccount, *, forward: bool) -> dict:
        """Adjust the whole document after the entry is written."""
        return root

    # -- reads -------------------------------------------------------------

    def load(self) -> Optional[dict]:
        return load_json_object(self.path)

    def tokens_from_entry(self, entry: Optional[dict]) -> Optional[TokenSet]:
        tokens = TokenSet(**self.fields.read(entry))
        return tokens if tokens.has_tokens else None

    def read_tokens(self) -> Optional[TokenSet]:
        """Canonical tokens held by this store, or None.

        Raises ParseError/IoError when the file exists but is unusable.
        """
        root = self.load()
        if root is None:
            return None
        entry = self.get_entry(root)
        return self.tokens_from_entry(entry if isinstance(entry, dict) else None)

    def snapshot(self) -> StoreSnapshot:
        """read_tokens() that records failures instead of raising."""
        snap = StoreSnapshot(name=self.name, path=str(self.path), exists=self.exists())
        if not snap.exists:
            return snap
        try:
            snap.tokens = self.read_tokens()
        except CodexQuotaError as exc:
            logger.debug("Cannot read %s: %s", self.path, exc)
            snap.error = str(exc)
        return snap

    # -- writes ------------------------------------------------------------

    def write_tokens(
        self,
        account: BaseAccount,
        previous: Optional[TokenSet] = None,
        *,
        create: bool = False,
    ) -> WriteResult:
        """Write the account's tokens into this store.

        With ``previous`` the write only happens when the stored entry
        matches those tokens (refresh persistence). Without it the store
        is overwritten with the account (forward-sync). A missing file is
        skipped unless ``create`` is set. Failures come back in
        ``WriteResult.error``.
        """
        result = WriteResult(name=self.name, path=str(self.path))
        if not self.exists() and not create:
            result.skipped = True
            return result

        try:
            root = self.load() or {}
            entry = self.get_entry(root)
            if not isinstance(entry, dict):
                entry = None
            if previous is not None:
                current = self.fields.read(entry)
                if not matches_tokens(current, previous.model_dump()):
                    logger.debug("%s holds another credential; not updating", self.name)
                    return result
            new_entry = self.fields.write(entry, account.tokens.model_dump(), now=now_ms())
            root = self.set_entry(root, new_entry)
            root = self.finalize(root, account, forward=previous is None)
            write_json(self.path, root)
        except CodexQuotaError as exc:
            logger.warning("Failed to update %s: %s", self.path, exc)
            result.error = str(exc)
            return result

        logger.info("Updated %s tokens in %s", self.provider.value, self.path)
        result.updated = True
        return result


class ProviderKeyedStore(PeerStore):
    """Peer file keyed by provider name, each value ``{"type": "oauth", ...}``."""

    SECTION_KEYS: dict[Provider, str] = {}

    @property
    def section_key(self) -> str:
        return self.SECTION_KEYS[self.provider]

    def get_entry(self, root: dict) -> Optional[dict]:
        return root.get(self.section_key)

    def set_entry(self, root: dict, entry: dict) -> dict:
        entry = dict(entry)
        entry["type"] = "oauth"
        root[self.section_key] = entry
        return root
