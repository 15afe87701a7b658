"""FastAPI application exposing the site fleet simulation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from site_fleet.enterprise.config.settings import get_settings
from site_fleet.observability import configure_logging, configure_tracer
from site_fleet.observability.metrics import REQUEST_COUNTER
from site_fleet.observability.tracing import SERVICE_NAME
from site_fleet.server.api.routers import (
	health_router,
	observability_router,
	robots_router,
	simulation_router,
	site_router,
	tasks_router,
)
from site_fleet.server.dependencies import get_engine
from site_fleet.services import MessagingBridge, build_message_bus

settings = get_settings()
configure_logging(settings.logging)
configure_tracer(f"{SERVICE_NAME}-api", settings.telemetry.otlp_endpoint)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
	engine = get_engine()
	engine.start_background()
	bridge = None
	if settings.mqtt.enabled:
		bridge = MessagingBridge(engine, build_message_bus(settings.mqtt), settings.mqtt)
		try:
			await bridge.start()
		except (OSError, ConnectionError) as exc:
			logger.warning("messaging_bridge_unavailable", error=str(exc))
			bridge = None
	try:
		yield
	finally:
		if bridge is not None:
			await bridge.stop()
		await engine.shutdown()


app = FastAPI(title="Site Fleet API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
	CORSMiddleware,
	allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

FastAPIInstrumentor.instrument_app(app)


@app.middleware("http")
async def count_requests(request: Request, call_next):
	REQUEST_COUNTER.inc()
	response = await call_next(request)
	return response


app.include_router(health_router, prefix="/api/v1")
app.include_router(simulation_router, prefix="/api/v1")
app.include_router(tasks_router, prefix="/api/v1")
app.include_router(robots_router, prefix="/api/v1")
app.include_router(site_router, prefix="/api/v1")
app.include_router(observability_router, prefix="/api/v1")


@app.get("/")
async def root() -> dict[str, str]:
	return {"message": "Site Fleet API"}
