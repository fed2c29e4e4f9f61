# Hinan Agents Module
from agents.simulator import AgentSimulator

__all__ = [
    "AgentSimulator",
]
