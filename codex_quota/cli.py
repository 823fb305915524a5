"""
CLI for codex-quota.

Two command groups, ``codex`` and ``claude``, each with switch, sync,
list, remove, add, reauth and quota. Every command accepts --json;
failures exit with status 1.
"""

import asyncio
import json
import logging
import sys
from typing import Callable, Optional

import click
from rich.console import Console

from codex_quota import __version__
from codex_quota.accounts import dedupe_by_email, validate_label
from codex_quota.config import Provider, QuotaConfig
from codex_quota.display import (
    render_accounts,
    render_remove,
    render_sync_result,
    render_usage,
)
from codex_quota.errors import CodexQuotaError, InvalidLabelError, NotFoundError
from codex_quota.models import ClaudeAccount, OpenAIAccount, TokenSet
from codex_quota.oauth import ClaudePasteFlow, OpenAILoginFlow, default_label
from codex_quota.sync import SyncCoordinator
from codex_quota.untracked import (
    find_untracked_claude_stores,
    import_as_new_account,
    merge_into_account,
)
from codex_quota.usage import collect_usage

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity (stderr, so --json stays clean)."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _fail(exc: Exception, as_json: bool):
    if as_json:
        payload = {"success": False, "error": str(exc)}
        if isinstance(exc, CodexQuotaError):
            payload.update(exc.context())
        click.echo(json.dumps(payload, indent=2))
    else:
        err_console.print(f"[red]Error:[/red] {exc}")
    sys.exit(1)


def _emit_json(data: dict):
    click.echo(json.dumps(data, indent=2))


def _coordinator(ctx: click.Context, provider: Provider) -> SyncCoordinator:
    return SyncCoordinator(provider, ctx.obj)


def _run(ctx: click.Context, as_json: bool, fn: Callable):
    """Call fn, turning engine errors into the CLI failure contract."""
    try:
        return fn()
    except CodexQuotaError as exc:
        logger.debug("Command failed", exc_info=True)
        _fail(exc, as_json)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--no-color", is_flag=True, help="Disable colored output (also NO_COLOR)")
@click.version_option(__version__, prog_name="codex-quota")
@click.pass_context
def main(ctx: click.Context, verbose: bool, no_color: bool):
    """Manage Codex and Claude OAuth accounts and keep CLI auth files in sync."""
    setup_logging(verbose)
    config = QuotaConfig.from_env()
    if no_color:
        config.no_color = True
    if config.no_color:
        console.no_color = True
        err_console.no_color = True
    ctx.obj = config


@main.group()
def codex():
    """ChatGPT/Codex accounts (Codex CLI, OpenCode, pi)."""


@main.group()
def claude():
    """Claude accounts (Claude Code, OpenCode, pi)."""


def _is_interactive() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def _import_untracked_claude(coord: SyncCoordinator, as_json: bool):
    """Offer to record Claude logins found only in OpenCode or pi."""
    if as_json or not _is_interactive():
        return
    container = coord.accounts.read_canonical()
    if container.root_type == "invalid":
        err_console.print(f"[yellow]Warning:[/yellow] Invalid Claude accounts file at {container.path}")
        return

    untracked = find_untracked_claude_stores(
        coord.accounts.load_all(include_native=False), coord.peers
    )
    for snap in untracked:
        err_console.print(
            f"Detected Claude OAuth token in {snap.name} ({snap.path}) "
            f"not saved in {container.path}."
        )
        labels = coord.accounts.read_canonical().labels
        err_console.print("  [1] Add as new account")
        if labels:
            err_console.print("  [2] Merge into existing account")
        err_console.print("  [3] Skip")
        choice = click.prompt(
            "Enter choice",
            type=click.Choice(["1", "2", "3"] if labels else ["1", "3"]),
            default="3",
            err=True,
        )
        try:
            if choice == "1":
                new_label = click.prompt("New label", err=True).strip()
                import_as_new_account(coord.accounts, new_label, snap.tokens)
                err_console.print(f"[green]Added[/green] Claude account [bold]{new_label}[/bold]")
            elif choice == "2":
                target = click.prompt(f"Merge into label ({', '.join(labels)})", err=True).strip()
                merge_into_account(coord.accounts, target, snap.tokens)
                err_console.print(f"[green]Merged[/green] OAuth token into [bold]{target}[/bold]")
            else:
                err_console.print("Skipping import.")
        except CodexQuotaError as exc:
            logger.debug("Import from %s skipped", snap.path, exc_info=True)
            err_console.print(f"[yellow]Skipping:[/yellow] {exc}")


def _register(group: click.Group, provider: Provider):
    """Attach the shared account commands to a provider group."""

    @group.command()
    @click.argument("label")
    @click.option("--dry-run", is_flag=True, help="Show what would change without writing")
    @click.option("--json", "as_json", is_flag=True, help="Output JSON")
    @click.pass_context
    def switch(ctx, label: str, dry_run: bool, as_json: bool):
        """Make LABEL the active account and push it to every CLI."""
        coord = _coordinator(ctx, provider)
        result = _run(ctx, as_json, lambda: asyncio.run(coord.switch(label, dry_run=dry_run)))
        if as_json:
            _emit_json(result.to_json_dict())
        else:
            render_sync_result(console, result, action="Switched to")

    @group.command()
    @click.option("--dry-run", is_flag=True, help="Show what would change without writing")
    @click.option("--json", "as_json", is_flag=True, help="Output JSON")
    @click.pass_context
    def sync(ctx, dry_run: bool, as_json: bool):
        """Pull fresher tokens, refresh if expiring, push to every CLI."""
        coord = _coordinator(ctx, provider)
        result = _run(ctx, as_json, lambda: asyncio.run(coord.sync(dry_run=dry_run)))
        if as_json:
            _emit_json(result.to_json_dict())
        else:
            render_sync_result(console, result)

    @group.command(name="list")
    @click.option("--json", "as_json", is_flag=True, help="Output JSON")
    @click.pass_context
    def list_accounts(ctx, as_json: bool):
        """List accounts from every source."""
        coord = _coordinator(ctx, provider)
        if provider is Provider.CLAUDE:
            _import_untracked_claude(coord, as_json)

        def load():
            active = coord.active_label(allow_migration=False)
            accounts = coord.accounts.load_all()
            if provider is Provider.OPENAI:
                accounts = dedupe_by_email(accounts, active)
            return active, accounts, coord.detect_divergence(allow_migration=False)

        active, accounts, divergence = _run(ctx, as_json, load)
        if as_json:
            _emit_json({
                "success": True,
                "activeLabel": active,
                "accounts": [
                    {
                        "label": a.label,
                        "source": a.source,
                        "expires": a.expires,
                        "isExpired": a.is_expired,
                        "accountId": getattr(a, "account_id", None),
                        "email": getattr(a, "email", None),
                        "active": a.label == active,
                    }
                    for a in accounts
                ],
                "divergence": divergence.to_json_dict(),
            })
        else:
            render_accounts(console, provider.value, accounts, active, divergence)

    @group.command()
    @click.argument("label")
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
    @click.option("--json", "as_json", is_flag=True, help="Output JSON")
    @click.pass_context
    def remove(ctx, label: str, yes: bool, as_json: bool):
        """Remove LABEL from the accounts file."""
        coord = _coordinator(ctx, provider)
        if not yes and not as_json:
            click.confirm(f"Remove account '{label}'?", abort=True)
        result = _run(ctx, as_json, lambda: coord.remove(label))
        if as_json:
            _emit_json(result.to_json_dict())
        else:
            render_remove(console, result)

    @group.command()
    @click.argument("label", required=False)
    @click.option("--json", "as_json", is_flag=True, help="Output JSON")
    @click.pass_context
    def quota(ctx, label: Optional[str], as_json: bool):
        """Show usage windows for one or all accounts."""
        coord = _coordinator(ctx, provider)
        if provider is Provider.CLAUDE:
            _import_untracked_claude(coord, as_json)

        def probe():
            accounts = coord.accounts.load_all()
            if provider is Provider.OPENAI:
                accounts = dedupe_by_email(accounts, label or coord.active_label(allow_migration=False))
            if label:
                accounts = [a for a in accounts if a.label == label]
                if not accounts:
                    raise NotFoundError(label, coord.accounts.labels())
            return asyncio.run(collect_usage(coord, accounts))

        reports = _run(ctx, as_json, probe)
        if as_json:
            _emit_json({
                "success": any(r.success for r in reports) or not reports,
                "accounts": [r.to_json_dict() for r in reports],
            })
        else:
            render_usage(console, reports)
        if reports and not any(r.success for r in reports):
            sys.exit(1)


_register(codex, Provider.OPENAI)
_register(claude, Provider.CLAUDE)


# ---------------------------------------------------------------------------
# add / reauth (provider-specific flows)
# ---------------------------------------------------------------------------


def _check_new_label(coord: SyncCoordinator, label: Optional[str]):
    if label is None:
        return
    validate_label(label)
    if label in coord.accounts.labels():
        raise InvalidLabelError(label, "an account with this label already exists")


def _openai_login(no_browser: bool, as_json: bool) -> tuple[TokenSet, OpenAILoginFlow]:
    flow = OpenAILoginFlow()
    out = err_console if as_json else console
    out.print("Open this URL to sign in with ChatGPT:")
    out.print(flow.auth_url, soft_wrap=True)
    return asyncio.run(flow.run(open_browser=not no_browser)), flow


def _claude_login(no_browser: bool, as_json: bool) -> TokenSet:
    flow = ClaudePasteFlow()
    out = err_console if as_json else console
    out.print("Open this URL to sign in with Claude:")
    out.print(flow.auth_url, soft_wrap=True)
    if not no_browser:
        flow.open_browser()
    pasted = click.prompt("Paste the authorization code", err=as_json)
    return asyncio.run(flow.complete(pasted))


@codex.command(name="add")
@click.argument("label", required=False)
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def codex_add(ctx, label: Optional[str], no_browser: bool, as_json: bool):
    """Add a ChatGPT/Codex account via browser OAuth."""
    coord = _coordinator(ctx, Provider.OPENAI)

    def add():
        _check_new_label(coord, label)
        tokens, flow = _openai_login(no_browser, as_json)
        account = OpenAIAccount(
            label=label or default_label(flow.email_for(tokens)),
            source=str(coord.accounts.canonical_path),
            access=tokens.access,
            refresh=tokens.refresh,
            expires=tokens.expires,
            account_id=tokens.account_id,
            id_token=tokens.id_token,
        )
        return account, coord.accounts.add(account)

    account, path = _run(ctx, as_json, add)
    if as_json:
        _emit_json({"success": True, "label": account.label, "email": account.email,
                    "accountId": account.account_id, "path": str(path)})
    else:
        console.print(f"[green]Added[/green] [bold]{account.label}[/bold] ({account.email or account.account_id})")
        console.print(f"Run 'codex-quota codex switch {account.label}' to make it active.")


@claude.command(name="add")
@click.argument("label", required=False)
@click.option("--token", help="Store this OAuth access token instead of running the login flow")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def claude_add(ctx, label: Optional[str], token: Optional[str], no_browser: bool, as_json: bool):
    """Add a Claude account via OAuth (or --token to paste one)."""
    coord = _coordinator(ctx, Provider.CLAUDE)

    def add():
        _check_new_label(coord, label)
        tokens = TokenSet(access=token.strip()) if token else _claude_login(no_browser, as_json)
        account = ClaudeAccount(
            label=label or default_label(None),
            source=str(coord.accounts.canonical_path),
            access=tokens.access,
            refresh=tokens.refresh,
            expires=tokens.expires,
            scopes=tokens.scopes,
        )
        return account, coord.accounts.add(account)

    account, path = _run(ctx, as_json, add)
    if as_json:
        _emit_json({"success": True, "label": account.label, "path": str(path)})
    else:
        console.print(f"[green]Added[/green] [bold]{account.label}[/bold]")
        console.print(f"Run 'codex-quota claude switch {account.label}' to make it active.")


@codex.command(name="reauth")
@click.argument("label")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def codex_reauth(ctx, label: str, no_browser: bool, as_json: bool):
    """Log in again for an existing ChatGPT/Codex account."""
    coord = _coordinator(ctx, Provider.OPENAI)

    def reauth():
        coord.accounts.require(label)
        tokens, _flow = _openai_login(no_browser, as_json)
        return coord.reauth(label, tokens)

    result = _run(ctx, as_json, reauth)
    if as_json:
        _emit_json(result.to_json_dict())
    else:
        console.print(f"[green]Re-authenticated[/green] [bold]{label}[/bold]")
        if result.updated:
            render_sync_result(console, result)


@claude.command(name="reauth")
@click.argument("label")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening a browser")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
@click.pass_context
def claude_reauth(ctx, label: str, no_browser: bool, as_json: bool):
    """Log in again for an existing Claude account."""
    coord = _coordinator(ctx, Provider.CLAUDE)

    def reauth():
        coord.accounts.require(label)
        return coord.reauth(label, _claude_login(no_browser, as_json))

    result = _run(ctx, as_json, reauth)
    if as_json:
        _emit_json(result.to_json_dict())
    else:
        console.print(f"[green]Re-authenticated[/green] [bold]{label}[/bold]")
        if result.updated:
            render_sync_result(console, result)


if __name__ == "__main__":
    main()
