"""
Agent Manager

Registry and lifecycle coordination for every agent runtime in the process.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from chorus.infra.bus import MessageBus
from chorus.orchestrator.runtime import AgentRuntime


logger = logging.getLogger(__name__)


class AgentManager:
    """Registers, starts, stops and lists agent runtimes."""

    def __init__(self):
        self._agents: Dict[str, AgentRuntime] = {}
        self._running = False

        logger.info("AgentManager initialized")

    def register(self, runtime: AgentRuntime):
        """
        Register an agent runtime.

        Raises:
            ValueError: if an agent with the same id is already registered
        """
        if runtime.agent_id in self._agents:
            raise ValueError(f"Agent with ID {runtime.agent_id} already registered")

        self._agents[runtime.agent_id] = runtime
        logger.info(f"Registered agent: {runtime.agent_id} ({runtime.profile.display_name})")

    def get(self, agent_id: str) -> Optional[AgentRuntime]:
        return self._agents.get(agent_id)

    def list(self) -> List[AgentRuntime]:
        return list(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    @property
    def running(self) -> bool:
        return self._running

    def start_all(self, bus: MessageBus, topic: str):
        """Start every registered agent on the given topic."""
        for runtime in self._agents.values():
            runtime.start(bus, topic)

        self._running = True
        logger.info(f"✅ Started {len(self._agents)} agents on {topic}")

    async def stop_all(self):
        """Stop every agent concurrently. Failures are logged, not raised."""
        if not self._agents:
            self._running = False
            return

        runtimes = list(self._agents.values())
        results = await asyncio.gather(*(runtime.stop() for runtime in runtimes), return_exceptions=True)

        for runtime, result in zip(runtimes, results):
            if isinstance(result, Exception):
                logger.error(f"❌ Failed to stop agent {runtime.agent_id}: {result}")

        self._running = False
        logger.info(f"🛑 Stopped {len(runtimes)} agents")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'running': self._running,
            'agent_count': len(self._agents),
            'agents': {agent_id: runtime.get_stats() for agent_id, runtime in self._agents.items()}
        }
