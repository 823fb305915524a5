"""Multi-account container codec.

The canonical store is a JSON object::

    {"schemaVersion": 1, ...unknown root fields..., "activeLabel": "work",
     "accounts": [{...}, ...]}

A bare JSON array of accounts is the legacy form; it is accepted on read
and upgraded to the object form on the next write. Unknown root fields
and unknown account fields are carried through verbatim.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, Field

from codex_quota import SCHEMA_VERSION
from codex_quota.errors import InvalidLabelError, ParseError
from codex_quota.fsutil import dump_json, load_json, write_json

logger = logging.getLogger(__name__)

RESERVED_ROOT_KEYS = ("schemaVersion", "activeLabel", "accounts")

RootType = Literal["missing", "array", "object", "invalid"]

_KEEP = object()


class Container(BaseModel):
    """Parsed view of a multi-account file."""

    path: Path
    exists: bool = False
    root_type: RootType = "missing"
    root_fields: dict[str, Any] = Field(default_factory=dict)
    schema_version: int = 0
    active_label: Optional[str] = None
    accounts: list[Any] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def labels(self) -> list[str]:
        return [
            a["label"] for a in self.accounts
            if isinstance(a, dict) and isinstance(a.get("label"), str)
        ]

    def require_writable(self) -> None:
        """Raise ParseError if the file on disk is corrupt."""
        if self.root_type == "invalid":
            raise ParseError(self.path, self.error or "unexpected root type")


def read_container(path: Path) -> Container:
    """Read a multi-account file without ever raising on bad content.

    >>> import tempfile, pathlib
    >>> p = pathlib.Path(tempfile.mkdtemp()) / "accounts.json"
    >>> read_container(p).root_type
    'missing'
    >>> _ = p.write_text('[{"label": "a"}]')
    >>> c = read_container(p); c.root_type, c.labels, c.schema_version
    ('array', ['a'], 0)
    """
    path = Path(path)
    try:
        data = load_json(path)
    except ParseError as exc:
        logger.warning("Ignoring corrupt accounts file %s", path)
        return Container(path=path, exists=True, root_type="invalid", error=exc.detail)

    if data is None:
        if path.exists():
            return Container(path=path, exists=True, root_type="invalid", error="null root")
        return Container(path=path)

    if isinstance(data, list):
        return Container(path=path, exists=True, root_type="array", accounts=data)

    if isinstance(data, dict):
        raw_accounts = data.get("accounts", [])
        if not isinstance(raw_accounts, list):
            return Container(
                path=path, exists=True, root_type="invalid",
                error="'accounts' is not an array",
            )
        version = data.get("schemaVersion")
        active = data.get("activeLabel")
        return Container(
            path=path,
            exists=True,
            root_type="object",
            root_fields={k: v for k, v in data.items() if k not in RESERVED_ROOT_KEYS},
            schema_version=version if isinstance(version, int) and not isinstance(version, bool) else 0,
            active_label=active if isinstance(active, str) and active else None,
            accounts=raw_accounts,
        )

    return Container(
        path=path, exists=True, root_type="invalid",
        error=f"unexpected root type {type(data).__name__}",
    )


def build_payload(
    container: Container,
    accounts: list[Any],
    *,
    active_label: Any = _KEEP,
    schema_version: Optional[int] = None,
) -> dict:
    """Assemble the object-root document with a stable key order.

    Order is schemaVersion, preserved root fields, activeLabel, accounts.
    Raises InvalidLabelError on duplicate labels or an explicit
    activeLabel that names no account.
    """
    labels: list[str] = []
    for entry in accounts:
        if isinstance(entry, dict) and isinstance(entry.get("label"), str):
            if entry["label"] in labels:
                raise InvalidLabelError(entry["label"], "duplicate label in accounts file")
            labels.append(entry["label"])

    if active_label is _KEEP:
        active = container.active_label
        if active and active not in labels:
            logger.warning(
                "activeLabel '%s' no longer matches an account in %s; clearing it",
                active, container.path,
            )
            active = None
    else:
        active = active_label or None
        if active is not None and active not in labels:
            raise InvalidLabelError(active, f"no account with this label in {container.path}")

    payload: dict[str, Any] = {
        "schemaVersion": max(container.schema_version, schema_version or 0, SCHEMA_VERSION),
    }
    for key, value in container.root_fields.items():
        payload[key] = value
    payload["activeLabel"] = active
    payload["accounts"] = accounts
    return payload


def encode_container(container: Container, accounts: list[Any], **overrides) -> bytes:
    return dump_json(build_payload(container, accounts, **overrides))


def write_container(
    container: Container, accounts: list[Any], **overrides
) -> Path:
    """Write accounts back to the container's file.

    Refuses to touch a corrupt file. Returns the path written (the
    symlink target when the store is a link).
    """
    container.require_writable()
    payload = build_payload(container, accounts, **overrides)
    written = write_json(container.path, payload)
    logger.info("Saved %d account(s) to %s", len(accounts), container.path)
    return written


def map_container_accounts(
    container: Container, fn: Callable[[dict], Optional[dict]]
) -> tuple[list[Any], bool]:
    """Apply fn to every dict entry; fn returns a replacement or None.

    Returns the new list and whether anything changed.
    """
    changed = False
    result = []
    for entry in container.accounts:
        if isinstance(entry, dict):
            updated = fn(entry)
            if updated is not None and updated != entry:
                result.append(updated)
                changed = True
                continue
        result.append(entry)
    return result, changed
