"""Exception taxonomy for codex-quota.

Every engine error derives from CodexQuotaError and exposes context()
so the CLI can emit ``{"success": false, "error": ..., **context}``.
"""

from typing import Optional


class CodexQuotaError(Exception):
    """Base class for all engine errors."""

    def context(self) -> dict:
        return {}


class ParseError(CodexQuotaError):
    """A file exists but is not valid JSON of the expected shape.

    >>> str(ParseError("/tmp/a.json", "expected object"))
    'Failed to parse /tmp/a.json: expected object'
    """

    def __init__(self, path, detail: str = "invalid JSON"):
        self.path = str(path)
        self.detail = detail
        super().__init__(f"Failed to parse {self.path}: {detail}")

    def context(self) -> dict:
        return {"path": self.path}


class IoError(CodexQuotaError):
    """Read, write, rename or chmod failure."""

    def __init__(self, path, op: str, cause: Optional[BaseException] = None):
        self.path = str(path)
        self.op = op
        self.cause = cause
        msg = f"Failed to {op} {self.path}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)

    def context(self) -> dict:
        return {"path": self.path, "op": self.op}


class RefreshError(CodexQuotaError):
    """Token refresh rejected or failed at the transport level."""

    def __init__(
        self,
        provider: str,
        status: Optional[int] = None,
        body: str = "",
        message: Optional[str] = None,
    ):
        self.provider = provider
        self.status = status
        self.body_snippet = (body or "")[:200]
        if message is None:
            message = f"{provider} token refresh failed"
            if status is not None:
                message += f" (HTTP {status})"
            if self.body_snippet:
                message += f": {self.body_snippet}"
        super().__init__(message)

    def context(self) -> dict:
        return {"provider": self.provider, "status": self.status}


class RefreshTimeoutError(RefreshError):
    """Token refresh exceeded its hard timeout."""

    def __init__(self, provider: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            provider, message=f"{provider} token refresh timed out after {timeout:g}s"
        )


class AmbiguousRecoveryError(CodexQuotaError):
    """Peer stores disagree, so no recovery source can be chosen."""

    def __init__(self, paths: list[str]):
        self.paths = list(paths)
        super().__init__(
            "Claude OAuth refresh failed and CLI auth stores disagree; "
            "refusing to overwrite. Reconcile manually by running `claude` "
            "to log in again, then re-run sync."
        )

    def context(self) -> dict:
        return {"paths": self.paths}


class NotFoundError(CodexQuotaError):
    """Label does not resolve to an account in any source."""

    def __init__(self, label: str, available: Optional[list[str]] = None):
        self.label = label
        self.available = list(available or [])
        msg = f"Account '{label}' not found"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg)

    def context(self) -> dict:
        return {"label": self.label, "available": self.available}


class NoActiveLabelError(NotFoundError):
    """Canonical store has no activeLabel to sync."""

    def __init__(self, command: str):
        CodexQuotaError.__init__(
            self, f"No activeLabel set. Run '{command} switch <label>' first."
        )
        self.label = None
        self.available = []


class ImmutableSourceError(CodexQuotaError):
    """Attempt to remove or rewrite a read-only (env or foreign) account."""

    def __init__(self, label: str, source: str, hint: str = ""):
        self.label = label
        self.source = source
        msg = f"Account '{label}' comes from {source} and cannot be modified"
        if hint:
            msg += f". {hint}"
        super().__init__(msg)

    def context(self) -> dict:
        return {"label": self.label, "source": self.source}


class InvalidLabelError(CodexQuotaError):
    """Label is malformed or already taken."""

    def __init__(self, label: str, reason: str):
        self.label = label
        self.reason = reason
        super().__init__(f"Invalid label '{label}': {reason}")

    def context(self) -> dict:
        return {"label": self.label}


class OAuthError(CodexQuotaError):
    """Authorization flow failed (denied, state mismatch, exchange error)."""
