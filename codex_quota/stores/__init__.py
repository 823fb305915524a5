"""Adapters for the auth files of peer CLIs."""

from codex_quota.config import Provider, StorePaths
from codex_quota.stores.base import PeerStore
from codex_quota.stores.claude_code import ClaudeCodeStore
from codex_quota.stores.codex_cli import CodexCliStore
from codex_quota.stores.opencode import OpencodeStore
from codex_quota.stores.pi import PiStore


def native_store(provider: Provider, paths: StorePaths) -> PeerStore:
    """The provider's own CLI store (Codex CLI or Claude Code)."""
    if provider is Provider.OPENAI:
        return CodexCliStore(paths.codex_cli)
    return ClaudeCodeStore(paths.claude_code)


def peer_stores(provider: Provider, paths: StorePaths) -> list[PeerStore]:
    """Every peer store for a provider, in freshness-scan order.

    OpenAI scans the editor and agent files before the Codex CLI;
    Claude scans Claude Code first.
    """
    native = native_store(provider, paths)
    opencode = OpencodeStore(paths.opencode, provider)
    pi = PiStore(paths.pi, provider)
    if provider is Provider.OPENAI:
        return [opencode, pi, native]
    return [native, opencode, pi]


__all__ = [
    "ClaudeCodeStore",
    "CodexCliStore",
    "OpencodeStore",
    "PeerStore",
    "PiStore",
    "native_store",
    "peer_stores",
]
