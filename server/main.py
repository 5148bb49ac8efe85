"""FastAPI server for the Big Two card game."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import FastAPI, Request

from config import config
from errors import GameError
from logging_config import setup_logging
from middleware import RequestIDMiddleware
from routers.games import error_response, router as games_router, ws_router as games_ws_router
from routers.health import router as health_router
from services.game_service import GameService
from stores import GamePubSub, GameStore, InMemoryGameStore, PostgresGameStore

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


# =============================================================================
# Store Setup (initialized in lifespan)
# =============================================================================


async def _init_redis() -> Optional[redis.Redis]:
    """Connect to Redis for cross-server change notifications."""
    try:
        client = redis.from_url(config.REDIS_URL, decode_responses=False)
        await client.ping()
        logger.info("Redis client connected")
        return client
    except (RedisError, OSError) as e:
        logger.warning(f"Redis connection failed: {e} - change notifications stay local to this server")
        return None


async def _init_store(app: FastAPI) -> GameStore:
    """Build the configured store and keep its collaborators on app.state."""
    app.state.redis = None
    app.state.pubsub = None

    if config.STORE_BACKEND != "postgres":
        logger.info("Using in-memory game store")
        return InMemoryGameStore()

    if not config.POSTGRES_URL:
        raise RuntimeError("STORE_BACKEND=postgres requires POSTGRES_URL")

    if config.REDIS_URL:
        app.state.redis = await _init_redis()
    if app.state.redis is not None:
        app.state.pubsub = GamePubSub(app.state.redis, server_id=config.SERVER_ID)
        await app.state.pubsub.start()

    store = await PostgresGameStore.create(config.POSTGRES_URL, pubsub=app.state.pubsub)
    logger.info("Using PostgreSQL game store")
    return store


async def _periodic_cleanup(service: GameService, interval: float) -> None:
    """Delete expired games on a fixed interval."""
    while True:
        try:
            await asyncio.sleep(interval)
            await service.cleanup_expired()
        except asyncio.CancelledError:
            break
        except GameError as e:
            logger.error(f"Expired game cleanup failed: {e}")


async def _shutdown(app: FastAPI) -> None:
    app.state.cleanup_task.cancel()
    try:
        await app.state.cleanup_task
    except asyncio.CancelledError:
        pass

    if app.state.pubsub is not None:
        await app.state.pubsub.stop()

    await app.state.store.close()
    logger.info("Game store closed")

    if app.state.redis is not None:
        await app.state.redis.close()
        logger.info("Redis connection closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    try:
        app.state.store = await _init_store(app)
    except Exception as e:
        logger.error(f"Failed to initialize game store: {e}")
        raise
    app.state.game_service = GameService(app.state.store)
    app.state.cleanup_task = asyncio.create_task(
        _periodic_cleanup(app.state.game_service, config.cleanup.interval_seconds)
    )

    logger.info(f"Big Two server started (environment={config.ENVIRONMENT}, server_id={config.SERVER_ID})")

    yield

    logger.info("Shutdown initiated...")
    await _shutdown(app)
    logger.info("Shutdown complete")


app = FastAPI(
    title="Big Two Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Middleware & Error Handling
# =============================================================================

app.add_middleware(RequestIDMiddleware)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError):
    response = error_response(exc)
    if response.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} refused: {exc.code}")
    return response


# =============================================================================
# Routers
# =============================================================================

app.include_router(games_router)
app.include_router(games_ws_router)
app.include_router(health_router)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Big Two server on {config.HOST}:{config.PORT}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
