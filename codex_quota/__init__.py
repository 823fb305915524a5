"""
codex-quota - multi-account OAuth credential manager for Codex and Claude.

Keeps a canonical multi-account file per provider and mirrors the active
account into the Codex CLI, Claude Code, OpenCode and pi auth files.
"""

__version__ = "0.4.0"

SCHEMA_VERSION = 1
