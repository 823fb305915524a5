"""Claude OAuth logins that live only in OpenCode or pi.

Signing in from OpenCode or pi leaves a Claude token in that tool's
auth file without adding it to the accounts file. These helpers find
such tokens and record them, either as a new labelled account or by
merging them into an existing one.
"""

import logging
from typing import Optional

from codex_quota.accounts import AccountStore, validate_label
from codex_quota.config import Provider
from codex_quota.errors import InvalidLabelError, NotFoundError
from codex_quota.fields import now_ms
from codex_quota.models import BaseAccount, ClaudeAccount, StoreSnapshot, TokenSet
from codex_quota.stores import OpencodeStore, PeerStore, PiStore
from codex_quota.token_match import matches_tokens

logger = logging.getLogger(__name__)


def is_usable_claude_login(tokens: Optional[TokenSet], now: Optional[int] = None) -> bool:
    """An access token that is not known to be expired.

    >>> is_usable_claude_login(TokenSet(access="a", expires=10), now=5)
    True
    >>> is_usable_claude_login(TokenSet(access="a", expires=10), now=10)
    False
    >>> is_usable_claude_login(TokenSet(refresh="r"))
    False
    """
    if tokens is None or not tokens.access:
        return False
    now = now_ms() if now is None else now
    return tokens.expires is None or tokens.expires > now


def find_untracked_claude_stores(
    accounts: list[BaseAccount],
    peers: list[PeerStore],
    now: Optional[int] = None,
) -> list[StoreSnapshot]:
    """OpenCode/pi snapshots whose Claude login no account holds.

    Tokens match on refresh when both sides have one, else on access.
    Unreadable files and expired tokens are ignored.
    """
    held = [a.tokens.model_dump() for a in accounts if a.access or a.refresh]
    untracked = []
    for peer in peers:
        if peer.provider is not Provider.CLAUDE or not isinstance(peer, (OpencodeStore, PiStore)):
            continue
        snap = peer.snapshot()
        if not is_usable_claude_login(snap.tokens, now):
            continue
        found = snap.tokens.model_dump()
        if any(matches_tokens(tokens, found) for tokens in held):
            continue
        logger.debug("Untracked Claude login in %s", snap.path)
        untracked.append(snap)
    return untracked


def import_as_new_account(store: AccountStore, label: str, tokens: TokenSet) -> ClaudeAccount:
    """Append the login to the accounts file under a new label."""
    validate_label(label)
    container = store.read_canonical()
    if label in container.labels:
        raise InvalidLabelError(label, "an account with this label already exists")
    account = ClaudeAccount(
        label=label,
        source=str(container.path),
        access=tokens.access,
        refresh=tokens.refresh,
        expires=tokens.expires,
        scopes=tokens.scopes,
    )
    store.add(account)
    return account


def merge_into_account(store: AccountStore, label: str, tokens: TokenSet) -> ClaudeAccount:
    """Replace the OAuth tokens of an account in the accounts file."""
    container = store.read_canonical()
    if label not in container.labels:
        raise NotFoundError(label, container.labels)
    return store.replace_tokens(label, tokens)
