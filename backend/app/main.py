"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import cart, ops, rooms
from app.api.errors import install_error_handlers
from app.infra import postgres
from app.obs import init as obs_init
from app.obs import logging as obs_logging
from app.settings import settings

logger = obs_logging.get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
	await postgres.init_pool()
	logger.info("startup_complete", extra={"environment": settings.environment})
	try:
		yield
	finally:
		await postgres.close_pool()


app = FastAPI(title="Group Shopping Rooms", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = [origin for origin in allow_origins if origin != "*"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
	expose_headers=["X-Request-Id"],
)
obs_init(app)

app.include_router(rooms.router, tags=["rooms"])
app.include_router(cart.router, tags=["cart"])
app.include_router(ops.router, tags=["ops"])
