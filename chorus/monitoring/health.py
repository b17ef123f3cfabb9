"""
Health Check Module

Component-level health for a running Chorus process:

- System resources (CPU, memory, disk)
- Message bus
- Conversation store
- Ingress consumer
- Agent runtimes
- Text generation backend

Used by the admin API for /health, /health/simple and /status.
"""

import asyncio
import os
import platform
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import psutil
from pydantic import BaseModel

from chorus import __version__
from chorus.conversation.store import ConversationStore
from chorus.infra.bus import MessageBus
from chorus.infra.error_handler import CircuitState
from chorus.ingest.ingress import IngressConsumer
from chorus.orchestrator.manager import AgentManager
from chorus.orchestrator.runtime import AgentState


class HealthStatus(str, Enum):
    """Health check status levels"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Individual component health information"""
    name: str
    status: HealthStatus
    message: str
    last_checked: datetime
    response_time_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None


class SystemHealth(BaseModel):
    """System-wide health response model"""
    status: HealthStatus
    timestamp: datetime
    uptime_seconds: float
    version: str = __version__
    components: Dict[str, ComponentHealth]
    system_info: Dict[str, Any]


class HealthChecker:
    """
    Runs one check per component and folds them into an overall status.

    Components are injected. A component that was never wired in reports
    UNHEALTHY.
    """

    def __init__(
        self,
        bus: Optional[MessageBus] = None,
        store: Optional[ConversationStore] = None,
        ingress: Optional[IngressConsumer] = None,
        agents: Optional[AgentManager] = None,
        generator: Optional[Any] = None
    ):
        self.bus = bus
        self.store = store
        self.ingress = ingress
        self.agents = agents
        self.generator = generator
        self.start_time = time.time()

    async def get_system_health(self) -> SystemHealth:
        """Run every check concurrently and aggregate."""
        checks = {
            "system": self._check_system_resources,
            "bus": self._check_bus_health,
            "store": self._check_store_health,
            "ingress": self._check_ingress_health,
            "agents": self._check_agents_health,
            "generator": self._check_generator_health,
        }

        results = await asyncio.gather(*(check() for check in checks.values()), return_exceptions=True)

        components: Dict[str, ComponentHealth] = {}
        for name, result in zip(checks.keys(), results):
            if isinstance(result, ComponentHealth):
                components[name] = result
            else:
                # Individual check failures are reported, not raised
                components[name] = ComponentHealth(
                    name=name,
                    status=HealthStatus.UNHEALTHY,
                    message=f"Health check failed: {str(result)}",
                    last_checked=datetime.now()
                )

        return SystemHealth(
            status=self._determine_overall_status(components),
            timestamp=datetime.now(),
            uptime_seconds=time.time() - self.start_time,
            components=components,
            system_info=self._get_system_info()
        )

    async def _check_system_resources(self) -> ComponentHealth:
        """Check system resource utilization"""
        start_time = time.time()

        cpu_percent = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')

        status = HealthStatus.HEALTHY
        issues = []

        if cpu_percent > 80.0:
            status = HealthStatus.DEGRADED
            issues.append(f"High CPU usage: {cpu_percent:.1f}%")

        if memory.percent > 85.0:
            status = HealthStatus.DEGRADED
            issues.append(f"High memory usage: {memory.percent:.1f}%")

        if disk.percent > 90.0:
            status = HealthStatus.DEGRADED
            issues.append(f"High disk usage: {disk.percent:.1f}%")

        message = "System resources within normal limits"
        if issues:
            message = f"Resource warnings: {', '.join(issues)}"

        return ComponentHealth(
            name="system",
            status=status,
            message=message,
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details={
                "cpu_percent": cpu_percent,
                "memory_percent": memory.percent,
                "memory_available_gb": memory.available / (1024**3),
                "disk_percent": disk.percent,
                "disk_free_gb": disk.free / (1024**3)
            }
        )

    async def _check_bus_health(self) -> ComponentHealth:
        start_time = time.time()

        if self.bus is None:
            return self._missing("bus", start_time)

        stats = self.bus.get_stats()
        if not self.bus.running:
            status, message = HealthStatus.UNHEALTHY, "Message bus is not running"
        elif stats["dropped_count"] > 0:
            status, message = HealthStatus.DEGRADED, f"Message bus dropped {stats['dropped_count']} payloads"
        else:
            status, message = HealthStatus.HEALTHY, "Message bus operational"

        return ComponentHealth(
            name="bus",
            status=status,
            message=message,
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details=stats
        )

    async def _check_store_health(self) -> ComponentHealth:
        start_time = time.time()

        if self.store is None:
            return self._missing("store", start_time)

        if self.store.closed:
            return ComponentHealth(
                name="store",
                status=HealthStatus.UNHEALTHY,
                message="Conversation store is closed",
                last_checked=datetime.now(),
                response_time_ms=(time.time() - start_time) * 1000
            )

        stats = self.store.get_stats()
        return ComponentHealth(
            name="store",
            status=HealthStatus.HEALTHY,
            message=f"Tracking {stats['conversations']} conversations",
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details=stats
        )

    async def _check_ingress_health(self) -> ComponentHealth:
        start_time = time.time()

        if self.ingress is None:
            return self._missing("ingress", start_time)

        stats = self.ingress.get_stats()
        consumer_stats = stats.get("consumer") or {}
        if not self.ingress.running:
            status, message = HealthStatus.UNHEALTHY, "Ingress consumer is not running"
        elif consumer_stats.get("transport_errors") or consumer_stats.get("decode_errors"):
            status = HealthStatus.DEGRADED
            message = (
                f"Ingress running with {consumer_stats.get('transport_errors', 0)} transport "
                f"and {consumer_stats.get('decode_errors', 0)} decode errors"
            )
        else:
            status, message = HealthStatus.HEALTHY, "Ingress consumer operational"

        return ComponentHealth(
            name="ingress",
            status=status,
            message=message,
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details=stats
        )

    async def _check_agents_health(self) -> ComponentHealth:
        start_time = time.time()

        if self.agents is None:
            return self._missing("agents", start_time)

        runtimes = self.agents.list()
        running = [r for r in runtimes if r.running]
        states = {r.agent_id: r.state.value for r in runtimes}

        if not runtimes:
            status, message = HealthStatus.DEGRADED, "No agents registered"
        elif not running:
            status, message = HealthStatus.UNHEALTHY, "No agents running"
        elif len(running) < len(runtimes):
            stopped = [r.agent_id for r in runtimes if r.state == AgentState.STOPPED]
            status, message = HealthStatus.DEGRADED, f"Stopped agents: {', '.join(stopped)}"
        else:
            status, message = HealthStatus.HEALTHY, f"{len(running)} agents running"

        return ComponentHealth(
            name="agents",
            status=status,
            message=message,
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details={"registered": len(runtimes), "running": len(running), "states": states}
        )

    async def _check_generator_health(self) -> ComponentHealth:
        start_time = time.time()

        if self.generator is None:
            return self._missing("generator", start_time)

        stats = self.generator.get_stats() if hasattr(self.generator, "get_stats") else {}
        breaker = getattr(self.generator, "breaker", None)

        # Remote backends expose health_check(); template generators do not
        backend = getattr(self.generator, "inner", self.generator)
        backend_check = getattr(backend, "health_check", None)
        backend_health = await backend_check() if backend_check is not None else None
        if backend_health is not None:
            stats = {**stats, "backend": backend_health}

        if breaker is not None and breaker.state == CircuitState.OPEN:
            status, message = HealthStatus.DEGRADED, "Text generation circuit breaker is open"
        elif breaker is not None and breaker.state == CircuitState.HALF_OPEN:
            status, message = HealthStatus.DEGRADED, "Text generation recovering"
        elif backend_health is not None and backend_health.get("status") != "healthy":
            status = HealthStatus.DEGRADED
            message = f"Text generation backend unreachable: {backend_health.get('error', 'unknown error')}"
        else:
            status, message = HealthStatus.HEALTHY, "Text generation available"

        return ComponentHealth(
            name="generator",
            status=status,
            message=message,
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000,
            details=stats
        )

    def _missing(self, name: str, start_time: float) -> ComponentHealth:
        return ComponentHealth(
            name=name,
            status=HealthStatus.UNHEALTHY,
            message=f"{name} not initialized",
            last_checked=datetime.now(),
            response_time_ms=(time.time() - start_time) * 1000
        )

    def _determine_overall_status(self, components: Dict[str, ComponentHealth]) -> HealthStatus:
        """Worst component status wins."""
        if not components:
            return HealthStatus.UNHEALTHY

        statuses = [comp.status for comp in components.values()]

        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            return HealthStatus.DEGRADED
        else:
            return HealthStatus.HEALTHY

    def _get_system_info(self) -> Dict[str, Any]:
        """Get basic system information"""
        return {
            "python_version": f"{platform.python_version()}",
            "platform": platform.system(),
            "hostname": platform.node(),
            "pid": os.getpid(),
            "cpu_count": psutil.cpu_count(),
            "memory_total_gb": psutil.virtual_memory().total / (1024**3)
        }
