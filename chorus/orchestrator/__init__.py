"""
Orchestrator package.

Per-agent decision making (arbiter), the long-lived agent workers (runtime)
and the registry that starts and stops them (manager).
"""

from .arbiter import (
    AgentProfile,
    Decision,
    DecisionReason,
    Relevance,
    ResponseArbiter,
    StyleHint
)
from .runtime import AgentRuntime, AgentState, PacingPolicy
from .manager import AgentManager

__all__ = [
    'AgentProfile',
    'Decision',
    'DecisionReason',
    'Relevance',
    'ResponseArbiter',
    'StyleHint',
    'AgentRuntime',
    'AgentState',
    'PacingPolicy',
    'AgentManager'
]
