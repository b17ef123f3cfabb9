#!/usr/bin/env python3
"""
Entry point for the Chorus multi-agent conversation service.

FastAPI hosts the admin API. The conversation machinery runs as background
tasks managed by FastAPI's lifespan events:

- a message bus carrying the canonical conversation stream
- an ingress consumer keeping shared conversation state up to date
- one runtime per agent deciding whether, when and what to reply
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from chorus import __version__
from chorus.config import Settings, get_settings, load_agent_roster, validate_configuration
from chorus.conversation import ConversationStore, FlowCoordinator, KeywordClassifier
from chorus.infra.bus import create_message_bus
from chorus.ingest.ingress import IngressConsumer
from chorus.llm import create_text_generator
from chorus.messages import Message, MessageKind, ParticipantRole
from chorus.monitoring.health import HealthChecker, HealthStatus, SystemHealth
from chorus.orchestrator import AgentManager, AgentRuntime, PacingPolicy, ResponseArbiter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

# Global application state
app_state: Dict[str, Any] = {
    "config": None,
    "bus": None,
    "store": None,
    "coordinator": None,
    "ingress": None,
    "agents": None,
    "generator": None,
    "health_checker": None
}


async def setup_system(config: Optional[Settings] = None) -> bool:
    """Setup all system components."""
    logger.info("🔧 Setting up system components...")

    try:
        # Load and validate configuration
        config = validate_configuration(config or get_settings())
        app_state["config"] = config
        logging.getLogger().setLevel(config.log_level.upper())

        logger.info(f"📋 Configuration: topic={config.chat_topic}, LLM={config.llm_provider}/{config.llm_model}")

        # Shared conversation state
        store = ConversationStore()
        coordinator = FlowCoordinator(store, KeywordClassifier())
        app_state["store"] = store
        app_state["coordinator"] = coordinator
        logger.info("✅ Conversation store initialized")

        # Message bus
        bus = await create_message_bus(max_queue_size=config.bus_max_queue_size)
        app_state["bus"] = bus
        logger.info("✅ Message bus initialized")

        # Text generation
        generator = create_text_generator(config)
        app_state["generator"] = generator
        logger.info(f"✅ Text generator initialized ({config.llm_provider})")

        # Agents
        arbiter = ResponseArbiter(
            overhear_chance=config.overhear_chance,
            history_window=config.history_window,
            max_recent_replies=config.max_recent_replies
        )
        pacing = PacingPolicy(base_seconds=config.pacing_base_seconds, jitter=config.pacing_jitter)

        manager = AgentManager()
        for agent_config in load_agent_roster(config.agents_file):
            profile = agent_config.to_profile()
            manager.register(AgentRuntime(
                profile=profile,
                store=store,
                arbiter=arbiter,
                generator=generator,
                pacing=pacing,
                context_window=config.context_window
            ))
            # Agents are on every roster before their first message
            coordinator.register_participant(
                profile.id,
                profile.display_name,
                ParticipantRole.AGENT,
                capabilities=profile.capabilities,
                personality=profile.personality
            )
        app_state["agents"] = manager

        # Ingress before agents, so state is tracked from the first message
        ingress = IngressConsumer(bus, coordinator, config.chat_topic)
        ingress.start()
        app_state["ingress"] = ingress
        logger.info("✅ Ingress consumer started")

        manager.start_all(bus, config.chat_topic)
        logger.info(f"✅ {len(manager)} agents started")

        # Initialize health checker
        app_state["health_checker"] = HealthChecker(
            bus=bus,
            store=store,
            ingress=ingress,
            agents=manager,
            generator=generator
        )
        logger.info("✅ Health checker initialized")

        return True

    except Exception as e:
        logger.error(f"❌ Failed to setup system: {e}")
        return False


async def shutdown_system():
    """Shutdown all system components gracefully."""
    logger.info("🛑 Shutting down system...")

    try:
        if app_state.get("agents"):
            await app_state["agents"].stop_all()

        if app_state.get("ingress"):
            await app_state["ingress"].stop()

        if app_state.get("bus"):
            await app_state["bus"].stop()

        # Waits for in-flight store operations
        if app_state.get("store"):
            app_state["store"].close()

        logger.info("✅ System shutdown complete")

    except Exception as e:
        logger.error(f"❌ Error during shutdown: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown."""

    # Startup
    logger.info("🚀 Starting Chorus API Server...")

    if not await setup_system():
        logger.error("❌ Failed to setup system components")
        sys.exit(1)

    logger.info("✅ All systems operational")

    try:
        yield
    finally:
        # Shutdown
        await shutdown_system()


# Create FastAPI application
app = FastAPI(
    title="Chorus API",
    description="Management and monitoring API for the Chorus multi-agent conversation service",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# Pydantic models for API
class PostMessageRequest(BaseModel):
    text: str
    sender_id: str = Field(..., min_length=1)
    display_name: Optional[str] = None
    conversation_id: Optional[str] = None
    kind: MessageKind = MessageKind.USER
    reply_to: Optional[str] = None
    custom: Dict[str, str] = Field(default_factory=dict)


def _require(name: str):
    component = app_state.get(name)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return component


def _require_conversation(conversation_id: str) -> ConversationStore:
    store = _require("store")
    if conversation_id not in store.conversation_ids():
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return store


# Health Check Endpoints
@app.get("/health", response_model=SystemHealth)
async def health_check():
    """
    Comprehensive health check endpoint for container orchestration.

    Returns detailed system health status including all components.
    """
    health_checker = _require("health_checker")

    try:
        return await health_checker.get_system_health()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")


@app.get("/health/simple")
async def simple_health():
    """
    Simple health check for load balancers and container health checks.

    Returns 200 OK if system is healthy, 503 if degraded/unhealthy.
    """
    health_checker = _require("health_checker")

    try:
        health_status = await health_checker.get_system_health()
    except Exception as e:
        logger.error(f"Simple health check failed: {e}")
        raise HTTPException(status_code=500, detail=f"Health check failed: {str(e)}")

    if health_status.status != HealthStatus.HEALTHY:
        raise HTTPException(status_code=503, detail=f"System status: {health_status.status.value}")
    return {"status": "healthy", "timestamp": health_status.timestamp}


@app.get("/status")
async def system_status():
    """System status endpoint providing operational information."""
    config = app_state.get("config")
    bus = app_state.get("bus")
    ingress = app_state.get("ingress")
    agents = app_state.get("agents")
    store = app_state.get("store")

    return {
        "status": "operational",
        "services": {
            "bus": "running" if bus and bus.running else "stopped",
            "ingress": "running" if ingress and ingress.running else "stopped",
            "agents": agents.get_stats() if agents else None,
            "store": store.get_stats() if store and not store.closed else None
        },
        "config": {
            "chat_topic": config.chat_topic if config else None,
            "llm_provider": config.llm_provider if config else None,
            "llm_model": config.llm_model if config else None
        }
    }


@app.get("/agents")
async def list_agents():
    """Registered agents and their current state."""
    agents = _require("agents")
    return {"agents": [runtime.describe() for runtime in agents.list()]}


@app.get("/conversations")
async def list_conversations():
    store = _require("store")
    return {
        "conversations": [
            store.stats(conversation_id).model_dump(mode="json")
            for conversation_id in store.conversation_ids()
        ]
    }


@app.get("/conversations/{conversation_id}/stats")
async def conversation_stats(conversation_id: str):
    store = _require_conversation(conversation_id)
    return store.stats(conversation_id).model_dump(mode="json")


@app.get("/conversations/{conversation_id}/messages")
async def conversation_messages(conversation_id: str, limit: int = 50):
    """Most recent messages of a conversation, oldest first."""
    store = _require_conversation(conversation_id)
    messages = store.recent(conversation_id, limit)
    return {
        "conversation_id": conversation_id,
        "messages": [message.model_dump(mode="json") for message in messages],
        "count": len(messages)
    }


@app.post("/messages")
async def post_message(request: PostMessageRequest):
    """Publish a message onto the canonical conversation stream."""
    bus = _require("bus")
    config = app_state["config"]

    try:
        message = Message(
            kind=request.kind,
            text=request.text,
            sender_id=request.sender_id,
            display_name=request.display_name,
            conversation_id=request.conversation_id or config.default_conversation_id,
            reply_to=request.reply_to,
            custom=request.custom
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        await bus.publish(config.chat_topic, message)
    except Exception as e:
        logger.error(f"❌ Failed to publish message: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to publish message: {str(e)}")

    logger.info(f"📝 Message published: sender={message.sender_id}, text='{message.text[:50]}'")
    return {"success": True, "message": message.model_dump(mode="json")}


@app.get("/")
async def root():
    """Root endpoint with basic system information."""
    return {
        "name": "Chorus API",
        "version": __version__,
        "status": "running",
        "endpoints": {
            "health": "/health",
            "simple_health": "/health/simple",
            "status": "/status",
            "agents": "/agents",
            "conversations": "/conversations",
            "conversation_stats": "/conversations/{conversation_id}/stats",
            "conversation_messages": "/conversations/{conversation_id}/messages",
            "post_message": "/messages",
            "docs": "/docs"
        }
    }


def main():
    """Main entry point for the application."""
    config = get_settings()

    uvicorn_config = uvicorn.Config(
        "main:app",
        host=config.admin_api_host,
        port=config.admin_api_port,
        log_level="info",
        access_log=True,
        reload=False
    )

    server = uvicorn.Server(uvicorn_config)

    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped by user")
    except Exception as e:
        logger.error(f"❌ Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
