"""OpenCode auth file: ``$XDG_DATA_HOME/opencode/auth.json``."""

from pathlib import Path

from codex_quota.config import Provider
from codex_quota.fields import PEER_CLAUDE, PEER_OPENAI
from codex_quota.stores.base import ProviderKeyedStore


class OpencodeStore(ProviderKeyedStore):
    name = "opencode"
    SECTION_KEYS = {Provider.OPENAI: "openai", Provider.CLAUDE: "anthropic"}

    def __init__(self, path: Path, provider: Provider):
        fields = PEER_OPENAI if provider is Provider.OPENAI else PEER_CLAUDE
        super().__init__(path, provider, fields)
