"""Base agent: shared gateway access and call logging."""

import time
from dataclasses import dataclass
from typing import Any

from ..gateway import GatewayResult, LLMGateway


@dataclass
class AgentLog:
    agent_name: str = ""
    action: str = ""
    prompt_preview: str = ""
    response_preview: str = ""
    elapsed_seconds: float = 0.0
    ok: bool = True


class BaseAgent:
    """Base class for all agents; every model call goes through the gateway."""

    def __init__(self, name: str, gateway: LLMGateway):
        self.name = name
        self.gateway = gateway
        self.logs: list[AgentLog] = []

    def call_text(
        self, system: str, prompt: str, task: str = "chapter"
    ) -> GatewayResult[str]:
        start = time.time()
        result = self.gateway.generate_text(prompt, system, task=task)
        self._log(f"text:{task}", prompt, result, time.time() - start)
        return result

    def call_json(
        self, system: str, prompt: str, schema: dict, task: str = "summary"
    ) -> GatewayResult[Any]:
        start = time.time()
        result = self.gateway.generate_structured(
            prompt, system + "\n\nRespond with valid JSON only.", schema, task=task
        )
        self._log(f"json:{task}", prompt, result, time.time() - start)
        return result

    def _log(
        self, action: str, prompt: str, result: GatewayResult, elapsed: float
    ) -> None:
        if result.ok:
            preview = str(result.value)[:200]
        else:
            preview = f"{result.error.value}: {result.message}"[:200]
        self.logs.append(
            AgentLog(
                agent_name=self.name,
                action=action,
                prompt_preview=prompt[:200],
                response_preview=preview,
                elapsed_seconds=round(elapsed, 2),
                ok=result.ok,
            )
        )
