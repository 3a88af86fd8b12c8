"""Writer agent: generate and regenerate chapter prose."""

from .base import BaseAgent
from ..errors import ErrorKind, GatewayError
from ..gateway import LLMGateway
from ..prompts import build_regeneration_prompt


class Writer(BaseAgent):
    def __init__(self, gateway: LLMGateway):
        super().__init__("Writer", gateway)

    def write_chapter(self, prompt: str, system: str) -> str:
        """Generate chapter prose. Raises GatewayError on any gateway failure."""
        content = self.call_text(system, prompt, task="chapter").unwrap().strip()
        if not content:
            raise GatewayError(ErrorKind.EMPTY_RESPONSE, "chapter prose was blank")
        return content

    def rewrite_chapter(
        self, base_prompt: str, previous_content: str, feedback: str, system: str
    ) -> str:
        """Regenerate a chapter from its fresh prompt plus the revision block."""
        prompt = build_regeneration_prompt(base_prompt, previous_content, feedback)
        return self.write_chapter(prompt, system)
