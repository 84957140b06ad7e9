import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastblog.config import settings
from fastblog.errors import register_exception_handlers
from fastblog.middleware import RequestMetricsMiddleware
from fastblog.ratelimit import rate_limiter
from fastblog.routers import articles, metrics, search, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("fastblog")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await rate_limiter.connect()
    except Exception as exc:
        # App works without Redis; requests are simply not rate limited.
        logger.warning("Rate limiter unavailable: %s", exc)
    yield
    # Shutdown
    await rate_limiter.disconnect()

app = FastAPI(
    title="fastblog",
    description="Publishing backend: article lifecycle, engagement, feeds and search",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(RequestMetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL] if settings.APP_ENV == "production" else ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Routers
app.include_router(articles.router)
app.include_router(search.router)
app.include_router(users.router)
app.include_router(metrics.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
