"""Canonical account store: env accounts plus the multi-account files.

The multi-account file that holds ``activeLabel`` (the "canonical"
path) is the first existing path for the provider, else the first
configured one. Accounts from CODEX_ACCOUNTS / CLAUDE_ACCOUNTS are
listed and usable but never written back.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional, Union

from codex_quota.config import Provider, QuotaConfig
from codex_quota.container import Container, read_container, write_container, map_container_accounts
from codex_quota.errors import (
    CodexQuotaError,
    ImmutableSourceError,
    InvalidLabelError,
    NotFoundError,
)
from codex_quota.fields import CLAUDE_ENTRY, OPENAI_ENTRY, FieldMap, first_present
from codex_quota.jwt import extract_account_id, extract_profile
from codex_quota.models import ClaudeAccount, OpenAIAccount, TokenSet
from codex_quota.stores import native_store
from codex_quota.token_match import matches_tokens

logger = logging.getLogger(__name__)

Account = Union[OpenAIAccount, ClaudeAccount]

LABEL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

ENV_VARS = {Provider.OPENAI: "CODEX_ACCOUNTS", Provider.CLAUDE: "CLAUDE_ACCOUNTS"}


def validate_label(label: Optional[str]) -> str:
    """Return the label or raise InvalidLabelError.

    >>> validate_label("work_2")
    'work_2'
    >>> validate_label("no spaces")
    Traceback (most recent call last):
    ...
    codex_quota.errors.InvalidLabelError: Invalid label 'no spaces': use letters, numbers, '-' or '_'
    """
    if not label or not LABEL_PATTERN.match(label):
        raise InvalidLabelError(label or "", "use letters, numbers, '-' or '_'")
    return label


def entry_fields(provider: Provider) -> FieldMap:
    return OPENAI_ENTRY if provider is Provider.OPENAI else CLAUDE_ENTRY


def entry_to_account(provider: Provider, entry: object, source: str) -> Optional[Account]:
    """Normalize a raw account entry; None when it is not a usable account."""
    if not isinstance(entry, dict):
        return None
    label = entry.get("label")
    if not isinstance(label, str) or not label:
        return None
    tokens = entry_fields(provider).read(entry)

    if provider is Provider.OPENAI:
        account_id = tokens["account_id"] or extract_account_id(tokens["access"])
        if not (account_id and tokens["access"] and tokens["refresh"]):
            return None
        return OpenAIAccount(
            label=label,
            source=source,
            access=tokens["access"],
            refresh=tokens["refresh"],
            expires=tokens["expires"],
            account_id=account_id,
            id_token=tokens["id_token"],
        )

    session_key = first_present(entry, ("sessionKey", "session_key"))
    if not (tokens["access"] or session_key):
        return None
    return ClaudeAccount(
        label=label,
        source=source,
        access=tokens["access"],
        refresh=tokens["refresh"],
        expires=tokens["expires"],
        scopes=tokens["scopes"],
        org_id=first_present(entry, ("orgId", "org_id")),
        session_key=session_key,
    )


def account_to_entry(account: Account, entry: Optional[dict] = None) -> dict:
    """Write an account into a (possibly existing) raw entry."""
    provider = Provider(account.provider)
    result = {"label": account.label} if entry is None else dict(entry)
    result["label"] = account.label
    result = entry_fields(provider).write(result, account.tokens.model_dump())
    if isinstance(account, ClaudeAccount):
        if account.org_id and "org_id" not in result:
            result["orgId"] = account.org_id
        if account.session_key and "session_key" not in result:
            result["sessionKey"] = account.session_key
    return result


def dedupe_by_email(accounts: list[Account], preferred_label: Optional[str] = None) -> list[Account]:
    """Drop OpenAI accounts whose JWT email was already seen.

    The account named ``preferred_label`` wins its email group so the
    active account stays visible.
    """
    def email_of(account):
        return extract_profile(account.access)["email"] if account.access else None

    preferred_email = None
    for account in accounts:
        if preferred_label and account.label == preferred_label:
            preferred_email = email_of(account)
            break

    seen: set[str] = set()
    result = []
    for account in accounts:
        email = email_of(account)
        if not email:
            result.append(account)
            continue
        if preferred_email and email == preferred_email:
            if account.label == preferred_label:
                result.append(account)
            continue
        if email in seen:
            continue
        seen.add(email)
        result.append(account)
    return result


class AccountStore:
    """All account sources for one provider."""

    def __init__(self, provider: Provider, config: QuotaConfig):
        self.provider = provider
        self.config = config
        self.paths = tuple(Path(p) for p in config.paths.canonical_paths(provider))
        self.native = native_store(provider, config.paths)

    @property
    def canonical_path(self) -> Path:
        for path in self.paths:
            if path.exists():
                return path
        return self.paths[0]

    def read_canonical(self) -> Container:
        return read_container(self.canonical_path)

    # -- loading -----------------------------------------------------------

    def env_accounts(self) -> list[Account]:
        raw = self.config.env_accounts_json(self.provider)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("%s env var is not valid JSON", ENV_VARS[self.provider])
            return []
        if isinstance(data, dict):
            data = data.get("accounts", [])
        if not isinstance(data, list):
            logger.warning("%s env var must be a JSON array", ENV_VARS[self.provider])
            return []
        accounts = [entry_to_account(self.provider, entry, "env") for entry in data]
        return [a for a in accounts if a is not None]

    def file_accounts(self, path: Path) -> list[Account]:
        container = read_container(path)
        accounts = [entry_to_account(self.provider, e, str(path)) for e in container.accounts]
        return [a for a in accounts if a is not None]

    def load_all(self, *, include_native: bool = True) -> list[Account]:
        """Env accounts, then every multi-account file, in that order.

        When nothing is configured, the provider CLI's own login is
        returned as a single read-only account.
        """
        accounts = list(self.env_accounts())
        for path in self.paths:
            accounts.extend(self.file_accounts(path))
        if not accounts and include_native:
            try:
                native = self.native.load_account()
            except CodexQuotaError as exc:
                logger.debug("Ignoring unreadable %s: %s", self.native.path, exc)
                native = None
            if native is not None:
                accounts.append(native)
        return accounts

    def labels(self) -> list[str]:
        return list(dict.fromkeys(a.label for a in self.load_all()))

    def find(self, label: str) -> Optional[Account]:
        for account in self.load_all():
            if account.label == label:
                return account
        return None

    def require(self, label: str) -> Account:
        account = self.find(label)
        if account is None:
            raise NotFoundError(label, self.labels())
        return account

    def find_canonical(self, label: str, container: Optional[Container] = None) -> Optional[Account]:
        """Account with this label inside the canonical file only."""
        container = container or self.read_canonical()
        for entry in container.accounts:
            if isinstance(entry, dict) and entry.get("label") == label:
                return entry_to_account(self.provider, entry, str(container.path))
        return None

    # -- writes ------------------------------------------------------------

    def set_active_label(self, label: Optional[str]) -> Path:
        container = self.read_canonical()
        container.require_writable()
        return write_container(container, container.accounts, active_label=label)

    def add(self, account: Account) -> Path:
        """Append a new account to the canonical file."""
        validate_label(account.label)
        if account.label in self.labels():
            raise InvalidLabelError(account.label, "an account with this label already exists")
        container = self.read_canonical()
        container.require_writable()
        entries = list(container.accounts) + [account_to_entry(account)]
        path = write_container(container, entries)
        logger.info("Added %s account '%s' to %s", self.provider.value, account.label, path)
        return path

    def replace_tokens(self, label: str, tokens: TokenSet) -> Account:
        """Replace an account's tokens in place (reauth)."""
        account = self.require(label)
        self._require_owned(account, "Re-authenticate it where it is defined.")
        updated = account.with_tokens(tokens)
        container = read_container(Path(account.source))
        container.require_writable()

        def replace(entry):
            if entry.get("label") == label:
                return account_to_entry(updated, entry)
            return None

        entries, _changed = map_container_accounts(container, replace)
        write_container(container, entries)
        return updated

    def remove(self, label: str) -> tuple[Account, Path, bool]:
        """Delete an account; clears activeLabel when it pointed at it.

        Returns (removed account, path written, active label cleared).
        """
        account = self.require(label)
        self._require_owned(account, "Remove it where it is defined.")
        container = read_container(Path(account.source))
        container.require_writable()
        remaining = [
            e for e in container.accounts
            if not (isinstance(e, dict) and e.get("label") == label)
        ]
        overrides = {}
        active_cleared = container.active_label == label
        if active_cleared:
            overrides["active_label"] = None
        path = write_container(container, remaining, **overrides)
        logger.info("Removed %s account '%s' from %s", self.provider.value, label, path)
        return account, path, active_cleared

    def persist_tokens(self, account: Account, previous: TokenSet) -> list[str]:
        """Write refreshed tokens into every file entry matching ``previous``.

        Env accounts are never persisted. The canonical file must be
        readable; other account files that are corrupt are skipped.
        """
        if account.is_env:
            logger.debug("Not persisting env account '%s'", account.label)
            return []
        fields = entry_fields(self.provider)
        prev = previous.model_dump()
        canonical = self.canonical_path
        updated: list[str] = []
        for path in self.paths:
            container = read_container(path)
            if not container.exists:
                continue
            if container.root_type == "invalid":
                if path == canonical:
                    container.require_writable()
                logger.warning("Skipping corrupt accounts file %s", path)
                continue

            def apply(entry):
                stored = fields.read(entry)
                if matches_tokens(stored, prev, account.label, entry.get("label")):
                    return fields.write(entry, account.tokens.model_dump())
                return None

            entries, changed = map_container_accounts(container, apply)
            if changed:
                write_container(container, entries)
                updated.append(str(path))
        return updated

    def _require_owned(self, account: Account, hint: str) -> None:
        if account.is_env:
            raise ImmutableSourceError(
                account.label, f"the {ENV_VARS[self.provider]} environment variable", hint
            )
        if Path(account.source) not in self.paths:
            raise ImmutableSourceError(account.label, account.source, hint)
