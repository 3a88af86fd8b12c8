from .base import AgentLog, BaseAgent
from .outline_architect import OutlineArchitect, chapters_from_items
from .writer import Writer
from .memory import Accumulation, MemoryAgent, apply_summaries, format_accumulated_summary
from .judge import Judge
from .outcome_planner import OutcomePlanner

__all__ = [
    "AgentLog",
    "BaseAgent",
    "OutlineArchitect",
    "chapters_from_items",
    "Writer",
    "Accumulation",
    "MemoryAgent",
    "apply_summaries",
    "format_accumulated_summary",
    "Judge",
    "OutcomePlanner",
]
