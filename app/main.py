import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.cache import cache
from app.config import settings
from app.errors import ServiceError
from app.middleware import RequestLogMiddleware
from app.routers import articles, profiles, tags, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await cache.connect()
    except Exception as exc:
        logger.warning("Starting without Redis: %s", exc)
    yield
    # Shutdown
    await cache.disconnect()


app = FastAPI(
    title="Conduit API",
    description="Articles, tags, favorites, follows and profiles",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestLogMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"errors": {"body": [exc.message]}})


# Routers
app.include_router(users.router)
app.include_router(profiles.router)
app.include_router(articles.router)
app.include_router(tags.router)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
