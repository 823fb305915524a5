"""Sync coordinator: pull the freshest copy, refresh if needed, push to peers.

One SyncCoordinator serves one provider. Every public operation reads
state from disk, acts, and returns a structured result; nothing is
cached between calls.

    sync:   resolve activeLabel -> PULL -> REFRESH -> PUSH
    switch: set activeLabel, then sync (creating the native CLI file)
    remove: drop the account, clear activeLabel and the tracked label
"""

import logging
from typing import Awaitable, Callable, Optional, Union

from codex_quota.accounts import AccountStore
from codex_quota.config import Provider, QuotaConfig
from codex_quota.divergence import (
    detect_claude_divergence,
    detect_openai_divergence,
    resolve_openai_active_label,
)
from codex_quota.errors import (
    AmbiguousRecoveryError,
    CodexQuotaError,
    ImmutableSourceError,
    NoActiveLabelError,
    NotFoundError,
    RefreshError,
)
from codex_quota.models import (
    ClaudeAccount,
    DivergenceReport,
    OpenAIAccount,
    RemoveResult,
    StoreSnapshot,
    SyncResult,
    TokenSet,
)
from codex_quota.refresh import is_expiring, refresh_tokens
from codex_quota.resolve import accepts_recovery, find_fresher_store, find_recovery_store
from codex_quota.stores import ClaudeCodeStore, CodexCliStore, peer_stores

logger = logging.getLogger(__name__)

Account = Union[OpenAIAccount, ClaudeAccount]
Refresher = Callable[[Provider, Optional[str]], Awaitable[TokenSet]]

COMMAND_NAMES = {Provider.OPENAI: "codex-quota codex", Provider.CLAUDE: "codex-quota claude"}


class SyncCoordinator:
    """Keeps every peer store in line with one provider's active account."""

    def __init__(
        self,
        provider: Provider,
        config: QuotaConfig,
        *,
        refresher: Refresher = refresh_tokens,
    ):
        self.provider = provider
        self.config = config
        self.refresher = refresher
        self.accounts = AccountStore(provider, config)
        self.peers = peer_stores(provider, config.paths)
        self.native = next(
            p for p in self.peers if isinstance(p, (CodexCliStore, ClaudeCodeStore))
        )

    # -- inspection --------------------------------------------------------

    def snapshots(self) -> list[StoreSnapshot]:
        return [peer.snapshot() for peer in self.peers]

    def detect_divergence(self, *, allow_migration: bool = True) -> DivergenceReport:
        if self.provider is Provider.OPENAI:
            return detect_openai_divergence(
                self.accounts, self.native, allow_migration=allow_migration
            )
        return detect_claude_divergence(self.accounts, self.peers)

    def active_label(self, *, allow_migration: bool = True) -> Optional[str]:
        if self.provider is Provider.OPENAI:
            label, _migrated = resolve_openai_active_label(
                self.accounts, self.native, allow_migration=allow_migration
            )
            return label
        return self.accounts.read_canonical().active_label

    # -- sync --------------------------------------------------------------

    async def sync(
        self,
        *,
        dry_run: bool = False,
        label: Optional[str] = None,
        create_native: bool = False,
    ) -> SyncResult:
        """Reconcile the active account with every peer store.

        Raises NoActiveLabelError, NotFoundError, ParseError (corrupt
        canonical file), RefreshError or AmbiguousRecoveryError. Peer
        write failures are reported in ``warnings``.
        """
        container = self.accounts.read_canonical()
        container.require_writable()
        label = label or self.active_label(allow_migration=not dry_run)
        if not label:
            raise NoActiveLabelError(COMMAND_NAMES[self.provider])

        account = self.accounts.find_canonical(label, container) or self.accounts.find(label)
        if account is None:
            raise NotFoundError(label, self.accounts.labels())

        result = SyncResult(provider=self.provider.value, dry_run=dry_run, active_label=label)
        if isinstance(account, ClaudeAccount) and not account.has_oauth:
            result.warnings.append("Active Claude account has no OAuth tokens; nothing to sync.")
            return result

        account = self._pull(account, result, dry_run=dry_run)
        if not dry_run:
            account = await self._ensure_fresh(account, result)
        self._push(account, result, dry_run=dry_run, create_native=create_native)

        if isinstance(account, OpenAIAccount):
            result.email = account.email
            result.account_id = account.account_id
        return result

    def _pull(self, account: Account, result: SyncResult, *, dry_run: bool) -> Account:
        fresher = find_fresher_store(
            account.tokens, self.snapshots(), access_heuristic=self.config.access_heuristic
        )
        if not fresher.fresher:
            return account

        store = fresher.store
        pulled = account.with_tokens(store.tokens)
        if dry_run:
            result.pulled.append(store.path)
            return pulled
        if self.accounts.persist_tokens(pulled, account.tokens):
            logger.info("Pulled fresher %s tokens from %s", self.provider.value, store.path)
            result.pulled.append(store.path)
        return pulled

    async def _ensure_fresh(self, account: Account, result: SyncResult) -> Account:
        if not is_expiring(self.provider, account.expires):
            return account
        previous = account.tokens
        try:
            refreshed = await self.refresher(self.provider, account.refresh)
        except RefreshError as exc:
            if self.provider is not Provider.CLAUDE:
                raise
            return self._recover(account, exc, result)

        account = account.with_tokens(refreshed)
        self.accounts.persist_tokens(account, previous)
        return account

    def _recover(self, account: Account, error: RefreshError, result: SyncResult) -> Account:
        snapshots = self.snapshots()
        recovery = find_recovery_store(snapshots)
        if recovery.reason == "ambiguous":
            raise AmbiguousRecoveryError(
                [s.path for s in snapshots if s.tokens is not None and s.tokens.has_tokens]
            ) from error
        if recovery.store is None or not accepts_recovery(account.tokens, recovery.store.tokens):
            raise RefreshError(
                error.provider,
                error.status,
                error.body_snippet,
                f"{error} No valid CLI auth stores found.",
            ) from error

        recovered = account.with_tokens(recovery.store.tokens)
        self.accounts.persist_tokens(recovered, account.tokens)
        logger.warning("Recovered %s tokens from %s", self.provider.value, recovery.store.path)
        result.warnings.append(
            f"Claude OAuth refresh failed; recovered tokens from {recovery.store.path}."
        )
        return recovered

    def _push(
        self,
        account: Account,
        result: SyncResult,
        *,
        dry_run: bool,
        create_native: bool = False,
    ) -> None:
        for peer in self.peers:
            create = create_native and peer is self.native
            if dry_run:
                target = result.updated if (peer.exists() or create) else result.skipped
                target.append(str(peer.path))
                continue
            written = peer.write_tokens(account, create=create)
            if written.skipped:
                result.skipped.append(written.path)
            elif written.error:
                result.warnings.append(f"Failed to update {peer.name} ({written.path}): {written.error}")
            elif written.updated:
                result.updated.append(written.path)

    # -- switch / remove / reauth -------------------------------------------

    async def switch(self, label: str, *, dry_run: bool = False) -> SyncResult:
        """Make ``label`` active and push it to every peer."""
        container = self.accounts.read_canonical()
        container.require_writable()
        if label not in container.labels:
            account = self.accounts.find(label)
            if account is None:
                raise NotFoundError(label, self.accounts.labels())
            source = "the environment" if account.is_env else account.source
            raise ImmutableSourceError(
                label, source, f"Only accounts in {container.path} can be made active."
            )

        account = self.accounts.find_canonical(label, container)
        if account is None:
            raise NotFoundError(label, self.accounts.labels())
        if isinstance(account, ClaudeAccount) and not account.has_oauth:
            raise CodexQuotaError(
                f"Account '{label}' has no OAuth token. Re-add it with OAuth to switch."
            )

        if not dry_run:
            self.accounts.set_active_label(label)
            logger.info("Set %s activeLabel to '%s'", self.provider.value, label)
        return await self.sync(dry_run=dry_run, label=label, create_native=True)

    def remove(self, label: str) -> RemoveResult:
        """Remove an account and any active/tracked references to it."""
        account, path, active_cleared = self.accounts.remove(label)
        result = RemoveResult(
            provider=self.provider.value,
            label=label,
            path=str(path),
            active_cleared=active_cleared,
        )
        if isinstance(self.native, CodexCliStore) and isinstance(account, OpenAIAccount):
            try:
                result.marker_cleared, result.marker_reason = self.native.clear_tracked_label(
                    label, account.account_id
                )
            except CodexQuotaError as exc:
                logger.warning("Could not clear tracked label in %s: %s", self.native.path, exc)
                result.marker_reason = "error"
        return result

    def reauth(self, label: str, tokens: TokenSet) -> SyncResult:
        """Store new tokens for an existing label; push them if it is active."""
        account = self.accounts.replace_tokens(label, tokens)
        result = SyncResult(provider=self.provider.value, active_label=self.active_label())
        if result.active_label == label:
            self._push(account, result, dry_run=False)
        return result

    # -- quota support -------------------------------------------------------

    async def refresh_if_expiring(self, account: Account) -> Account:
        """Refresh a (possibly inactive) account before calling usage APIs.

        New tokens go to every file entry and peer that held the old ones.
        """
        if not is_expiring(self.provider, account.expires) or not account.refresh:
            return account
        previous = account.tokens
        refreshed = account.with_tokens(await self.refresher(self.provider, account.refresh))
        self.persist_refreshed(refreshed, previous)
        return refreshed

    def persist_refreshed(self, account: Account, previous: TokenSet) -> list[str]:
        if account.is_env:
            return []
        updated = self.accounts.persist_tokens(account, previous)
        for peer in self.peers:
            written = peer.write_tokens(account, previous)
            if written.updated:
                updated.append(written.path)
            elif written.error:
                logger.warning("Failed to persist refreshed tokens to %s", written.path)
        return updated
