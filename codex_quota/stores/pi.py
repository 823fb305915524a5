"""pi coding agent auth file: ``~/.pi/agent/auth.json``.

Same entry shape as OpenCode; the OpenAI slot is named ``openai-codex``.
"""

from pathlib import Path

from codex_quota.config import Provider
from codex_quota.fields import PEER_CLAUDE, PEER_OPENAI
from codex_quota.stores.base import ProviderKeyedStore


class PiStore(ProviderKeyedStore):
    name = "pi"
    SECTION_KEYS = {Provider.OPENAI: "openai-codex", Provider.CLAUDE: "anthropic"}

    def __init__(self, path: Path, provider: Provider):
        fields = PEER_OPENAI if provider is Provider.OPENAI else PEER_CLAUDE
        super().__init__(path, provider, fields)
