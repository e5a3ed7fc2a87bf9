"""Gamerz Backend Application.

This is the main entry point for the Gamerz backend service.
Gamerz is a gated chat application: players register with a motivation
statement, an administrator approves them, and approved players chat in
per-game chatrooms over a WebSocket.

Modules:
    - auth: registration, login (JWT cookie), admin approval
    - chatrooms: chatroom directory and REST endpoints
    - chat: real-time room membership, broadcast and WebSocket endpoint
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gamerz.auth.resolver import IdentityResolver
from gamerz.auth.router import admin_router, router as auth_router
from gamerz.auth.service import UserService
from gamerz.chat.hub import ChatHub
from gamerz.chat.router import router as chat_router
from gamerz.chat.store import MessageStore
from gamerz.chatrooms.router import router as chatrooms_router
from gamerz.chatrooms.service import ChatroomDirectory
from gamerz.config import AppConfig, get_config
from gamerz.store import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in ("websockets", "uvicorn.access", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, config: AppConfig) -> None:
    """Open storage and build the services kept on ``app.state``."""
    db = Database.get_instance(config.database.path)
    users = UserService(db, iterations=config.auth.password_iterations)
    chatrooms = ChatroomDirectory(db)
    messages = MessageStore(db)
    resolver = IdentityResolver(users, config)

    if config.chatrooms.seed_defaults:
        chatrooms.seed(config.chatrooms.defaults)

    admin_password = config.secrets.admin.password
    if config.admin.email and admin_password:
        users.ensure_admin(config.admin.username, config.admin.email, admin_password)
    elif config.admin.email:
        logger.warning(
            "Bootstrap admin %s has no password; set secrets.admin.password or GAMERZ_ADMIN_PASSWORD",
            config.admin.email,
        )

    app.state.config = config
    app.state.db = db
    app.state.users = users
    app.state.chatrooms = chatrooms
    app.state.messages = messages
    app.state.resolver = resolver
    app.state.hub = ChatHub(messages, resolver, chatrooms, config.realtime)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config: AppConfig = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in gamerz.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    init_state(app, config)
    logger.info(
        "Gamerz ready on http://%s:%s (database=%s)",
        config.server.host,
        config.server.port,
        config.database.path,
    )

    yield  # Application runs here

    # Shutdown
    Database.reset_instance()
    logger.info("Application shutdown complete")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Explicit configuration (tests); loaded from YAML when omitted.
    """
    app = FastAPI(
        title="Gamerz API",
        description="Gated per-game chatrooms with real-time messaging",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config or get_config()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app.state.config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(admin_router)
    app.include_router(chatrooms_router)
    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Server status and whether the database answers.
        """
        db: Database = app.state.db
        return {
            "status": "ok",
            "database": "connected" if db.ping() else "error",
        }

    return app


app = create_app()
