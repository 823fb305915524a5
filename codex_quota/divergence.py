"""Detect when peer CLIs hold a different account than activeLabel.

OpenAI compares account ids (canonical account vs. the Codex CLI
login). Claude compares tokens against every peer store. Neither
detector writes anything, except the optional OpenAI migration that
promotes the Codex CLI's tracked label into an empty activeLabel.
"""

import logging
from typing import Optional

from codex_quota.accounts import AccountStore
from codex_quota.config import Provider
from codex_quota.container import write_container
from codex_quota.errors import CodexQuotaError
from codex_quota.models import (
    ClaudeAccount,
    DivergenceReport,
    StoreComparison,
    StoreSnapshot,
    TokenSet,
)
from codex_quota.stores import CodexCliStore, PeerStore

logger = logging.getLogger(__name__)


def _read_cli(cli: CodexCliStore) -> tuple[Optional[TokenSet], Optional[str]]:
    try:
        return cli.read_tokens(), cli.read_tracked_label()
    except CodexQuotaError as exc:
        logger.debug("Cannot read %s: %s", cli.path, exc)
        return None, None


def resolve_openai_active_label(
    accounts: AccountStore, cli: CodexCliStore, *, allow_migration: bool = True
) -> tuple[Optional[str], bool]:
    """activeLabel, falling back to the Codex CLI's tracked label.

    The tracked label is used only when activeLabel is unset and the
    label's account id equals the CLI's. With ``allow_migration`` it is
    also written into the canonical file. Returns (label, migrated).
    """
    container = accounts.read_canonical()
    if container.active_label:
        return container.active_label, False

    tokens, tracked = _read_cli(cli)
    cli_account_id = tokens.account_id if tokens else None
    if not tracked or not cli_account_id:
        return None, False
    tracked_account = accounts.find(tracked)
    if tracked_account is None or tracked_account.account_id != cli_account_id:
        return None, False

    if allow_migration and tracked in container.labels and container.root_type != "invalid":
        write_container(container, container.accounts, active_label=tracked)
        logger.info("Migrated tracked label '%s' to activeLabel in %s", tracked, container.path)
        return tracked, True
    return tracked, False


def detect_openai_divergence(
    accounts: AccountStore, cli: CodexCliStore, *, allow_migration: bool = True
) -> DivergenceReport:
    """Compare the active account's id with the Codex CLI login's id."""
    active_label, migrated = resolve_openai_active_label(
        accounts, cli, allow_migration=allow_migration
    )
    active_account = accounts.find(active_label) if active_label else None
    active_account_id = active_account.account_id if active_account else None

    tokens, _tracked = _read_cli(cli)
    cli_account_id = tokens.account_id if tokens else None
    cli_label = None
    if cli_account_id:
        for path in accounts.paths:
            match = next(
                (a for a in accounts.file_accounts(path) if a.account_id == cli_account_id),
                None,
            )
            if match is not None:
                cli_label = match.label
                break

    considered = bool(active_account_id and cli_account_id)
    diverged = considered and active_account_id != cli_account_id
    return DivergenceReport(
        provider=Provider.OPENAI.value,
        active_label=active_label,
        diverged=diverged,
        skipped=active_label is None,
        skip_reason="no-active-label" if active_label is None else None,
        migrated=migrated,
        active_account_id=active_account_id,
        cli_account_id=cli_account_id,
        cli_label=cli_label,
        per_store=[
            StoreComparison(
                name=cli.name,
                path=str(cli.path),
                exists=cli.exists(),
                considered=considered,
                matches=(not diverged) if considered else None,
                method="account_id" if considered else None,
            )
        ],
    )


def compare_claude_tokens(active: TokenSet, snap: StoreSnapshot) -> StoreComparison:
    """Compare on refresh tokens when both sides have one, else access.

    A store lacking the token type the active account has is not
    considered, so such drift stays hidden.
    """
    comparison = StoreComparison(name=snap.name, path=snap.path, exists=snap.exists)
    tokens = snap.tokens
    if tokens is None:
        return comparison
    if active.refresh and tokens.refresh:
        comparison.considered = True
        comparison.matches = active.refresh == tokens.refresh
        comparison.method = "refresh"
    elif active.access and tokens.access:
        comparison.considered = True
        comparison.matches = active.access == tokens.access
        comparison.method = "access"
    return comparison


def detect_claude_divergence(accounts: AccountStore, peers: list[PeerStore]) -> DivergenceReport:
    report = DivergenceReport(provider=Provider.CLAUDE.value)
    container = accounts.read_canonical()
    report.active_label = container.active_label
    if not container.active_label:
        report.skipped, report.skip_reason = True, "no-active-label"
        return report

    active = accounts.find_canonical(container.active_label, container)
    if not isinstance(active, ClaudeAccount):
        report.skipped, report.skip_reason = True, "active-account-missing"
        return report
    if not active.has_oauth:
        report.skipped, report.skip_reason = True, "active-account-not-oauth"
        return report

    report.per_store = [compare_claude_tokens(active.tokens, p.snapshot()) for p in peers]
    report.diverged = any(s.considered and s.matches is False for s in report.per_store)
    return report
