"""Freshness and recovery resolvers.

Both work on StoreSnapshot lists taken by the caller, so they never
touch the filesystem themselves.
"""

import logging
from typing import Optional

from codex_quota.models import FresherResult, RecoveryResult, StoreSnapshot, TokenSet

logger = logging.getLogger(__name__)


def find_fresher_store(
    active: TokenSet,
    snapshots: list[StoreSnapshot],
    *,
    access_heuristic: bool = True,
) -> FresherResult:
    """Pick the peer holding a newer copy of the active credential.

    Only peers sharing the active refresh token are candidates. A known
    expiry beats the current best when it is later, or when the best has
    no expiry. When neither side carries an expiry and the access tokens
    differ, the peer is assumed fresher if ``access_heuristic`` is on.
    """
    if not active.refresh:
        return FresherResult()

    best_expires = active.expires
    best_access = active.access
    chosen: Optional[StoreSnapshot] = None

    for snap in snapshots:
        tokens = snap.tokens
        if tokens is None or not tokens.access or tokens.refresh != active.refresh:
            continue
        if tokens.expires is not None:
            if best_expires is None or tokens.expires > best_expires:
                chosen, best_expires, best_access = snap, tokens.expires, tokens.access
        elif best_expires is None and access_heuristic and tokens.access != best_access:
            chosen, best_access = snap, tokens.access

    if chosen is None:
        return FresherResult()
    logger.debug("Fresher tokens found in %s", chosen.path)
    return FresherResult(fresher=True, store=chosen)


def find_recovery_store(snapshots: list[StoreSnapshot]) -> RecoveryResult:
    """Choose a peer to restore from after a failed refresh.

    Refuses (``ambiguous``) when peers hold different credentials;
    otherwise returns the candidate with the latest expiry.
    """
    candidates = [s for s in snapshots if s.tokens is not None and s.tokens.has_tokens]
    if not candidates:
        return RecoveryResult(reason="no-stores")

    fingerprints = {s.tokens.fingerprint for s in candidates}
    if len(fingerprints) > 1:
        logger.warning(
            "Recovery refused: %d stores hold different credentials", len(candidates)
        )
        return RecoveryResult(reason="ambiguous")

    best = candidates[0]
    for snap in candidates[1:]:
        if (snap.tokens.expires or 0) > (best.tokens.expires or 0):
            best = snap
    return RecoveryResult(store=best)


def accepts_recovery(active: TokenSet, candidate: TokenSet) -> bool:
    """Recovery is taken only when it is strictly newer than what we hold.

    >>> accepts_recovery(TokenSet(expires=1), TokenSet(access="a", expires=2))
    True
    >>> accepts_recovery(TokenSet(expires=2), TokenSet(access="a", expires=2))
    False
    >>> accepts_recovery(TokenSet(), TokenSet(access="a"))
    True
    """
    if not candidate.access:
        return False
    if active.expires is None:
        return True
    return candidate.expires is not None and candidate.expires > active.expires
