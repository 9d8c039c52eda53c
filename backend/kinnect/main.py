"""FastAPI application entrypoint.

Serve `kinnect.main:socket_app` so Socket.IO traffic and HTTP share one ASGI app.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import asyncpg
import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kinnect.api import chat, connections, notifications, ops, reactions
from kinnect.api.errors import install_error_handlers
from kinnect.domain.chat import sockets as chat_sockets
from kinnect.domain.chat.namespace import ChatNamespace
from kinnect.domain.connections.sockets import SocialNamespace, set_namespace as set_social_namespace
from kinnect.domain.notifications import dispatcher as notification_dispatcher
from kinnect.infra import postgres
from kinnect.obs import init as obs_init
from kinnect.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		await postgres.init_pool()
	except (OSError, asyncpg.PostgresError):
		if not settings.is_dev():
			raise
		logger.warning("Postgres unavailable at startup, serving from in-memory stores")
	try:
		yield
	finally:
		await notification_dispatcher.drain()
		await postgres.close_pool()


app = FastAPI(title="Kinnect API", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else ["https://app.kinnect.example"]

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = ["https://app.kinnect.example"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
social_namespace = SocialNamespace()
sio.register_namespace(social_namespace)
set_social_namespace(social_namespace)
chat_namespace = ChatNamespace()
sio.register_namespace(chat_namespace)
chat_sockets.set_namespace(chat_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.include_router(connections.router)
app.include_router(chat.router)
app.include_router(notifications.router)
app.include_router(reactions.router)
app.include_router(ops.router)
