import logging
import logging.config
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import get_config
from app.dependencies import limiter
from app.routers.links import router as links_router
from app.routers.logs import router as logs_router
from app.routers.read import router as read_router
from app.services.activity import InMemoryActivityStore
from app.services.cache import InMemoryCacheStore

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "loggers": {
            # One line per outbound request during a crawl is too chatty
            "httpx": {"level": "WARNING"},
            "trafilatura": {"level": "WARNING"},
        },
        "root": {"level": os.getenv("CRAWLTREE_LOG_LEVEL", "INFO").upper(), "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="crawltree",
    description="Reads web pages as Markdown and crawls sites into cached link trees.",
    version="1.0.0",
)

# Collaborators; deployments replace these with persistent stores
app.state.config = get_config()
app.state.links_cache = InMemoryCacheStore()
app.state.read_cache = InMemoryCacheStore()
app.state.activity_store = InMemoryActivityStore()

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(read_router)
app.include_router(links_router)
app.include_router(logs_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": "Hello from crawltree"}
