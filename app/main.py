"""
FastAPI application for mnemo.

Hosts the background memory worker, builds step engines for stored agents,
and exposes health and queue statistics. The scheduler, memory processor,
worker and engine factory are constructed here, once per application, and kept
on ``app.state``.

Usage:
    uvicorn app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from loguru import logger

from app.agent import AgentConfig, StepEngine, default_hooks
from app.agent.storage import InMemoryAgentStore, RetryingAgentStore
from app.agent.tools import ToolRegistry
from app.memory.processor import MemoryProcessor
from app.memory.store import InMemoryMemoryStore
from app.workers.queue_manager import QueueConfig, QueueManager
from app.workers.worker import QueueWorker, WorkerConfig
from mnemo_core.config import Settings, settings as default_settings
from mnemo_core.domain.interfaces import ModelClientProtocol
from mnemo_core.logging import setup_logging
from mnemo_core.runtime.retry import RetryPolicy

VERSION = "1.0.0"


def create_app(app_settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Settings to use instead of the process-wide instance.
    """
    cfg = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(cfg.LOG_LEVEL, json_logs=cfg.LOG_JSON)

        agent_store = InMemoryAgentStore()
        retrying_store = RetryingAgentStore(agent_store, RetryPolicy.from_settings(cfg))
        tool_registry = ToolRegistry()
        memory_store = InMemoryMemoryStore()
        processor = MemoryProcessor(
            memory_store,
            retrying_store,
            memory_retention_days=cfg.MEMORY_RETENTION_DAYS,
            trace_retention_days=cfg.TRACE_RETENTION_DAYS,
        )
        manager = QueueManager(QueueConfig.from_settings(cfg))
        worker = QueueWorker(manager, processor, WorkerConfig.from_settings(cfg))

        def create_engine(agent_id: str, model_client: ModelClientProtocol) -> StepEngine:
            """Step engine for a stored agent, sharing this app's store and tools."""
            return StepEngine(
                agent=agent_store.get_agent(agent_id),
                store=retrying_store,
                model_client=model_client,
                hooks=default_hooks(retrying_store, tool_registry),
                config=AgentConfig.from_settings(cfg),
            )

        app.state.agent_store = agent_store
        app.state.tool_registry = tool_registry
        app.state.create_engine = create_engine
        app.state.memory_store = memory_store
        app.state.queue_manager = manager
        app.state.worker = worker

        await worker.start()
        logger.info(f"{cfg.SERVICE_NAME} started")
        try:
            yield
        finally:
            await worker.stop()
            logger.info(f"{cfg.SERVICE_NAME} stopped")

    app = FastAPI(
        title="mnemo",
        description="Agent stepping runtime with background memory processing",
        version=VERSION,
        lifespan=lifespan,
    )

    @app.get("/health")
    def health(request: Request):
        """
        Health check endpoint.

        Returns:
            dict: Status, service information and whether the worker is running.
        """
        worker = getattr(request.app.state, "worker", None)
        return {
            "status": "ok",
            "service": cfg.SERVICE_NAME,
            "version": VERSION,
            "worker_running": bool(worker and worker.is_running),
        }

    @app.get("/queue/stats")
    def queue_stats(request: Request):
        """Per job type pending / processing / completed / failed counts."""
        manager: QueueManager = request.app.state.queue_manager
        return {"running": manager.is_running, "queues": manager.get_stats()}

    return app


app = create_app()
