"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Configure the event logger from AppConfig
- Initialize shared per-process resources (OpenAI client, HTTP client)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from config import AppConfig
from observability import logger
from observability.logger import log_event

from server.routes import register_routes


def create_app(config: AppConfig | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The app factory pattern allows:
    - Testing with an explicit AppConfig
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    logger.configure(level=config.log_level, json_lines=config.enable_json_logs)

    # Create OpenAI client ONCE per process
    if not config.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")
    openai_client = AsyncOpenAI(api_key=config.openai_api_key)

    # Shared by the book catalog, backend session provider and SDP exchange
    http_client = httpx.AsyncClient(timeout=config.http_timeout_s)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        log_event({
            "event_type": "server_started",
            "env": config.env,
            "transport": config.realtime_transport,
            "session_provider": config.session_provider,
        })
        try:
            yield
        finally:
            await http_client.aclose()
            await openai_client.close()
            log_event({"event_type": "server_stopped"})

    app = FastAPI(title="Appu Voice Agent API", lifespan=lifespan)

    app.state.config = config
    app.state.openai_client = openai_client
    app.state.http_client = http_client

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
