from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.database import create_schema, dispose_engine
from app.search.engine import SearchService
from app.services.rate_limit import SearchRateLimiter


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    await create_schema()

    # One search service per process; it memoizes the capability probe
    app.state.search_service = SearchService()
    app.state.search_rate_limiter = SearchRateLimiter(get_settings().SEARCH_RATE_LIMIT)

    yield
    await dispose_engine()


app = FastAPI(
    title="Household Inventory Search",
    description="Capability-aware item search for household inventories",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Router includes ---
from app.api.admin import router as admin_router
from app.api.search import router as search_router

app.include_router(search_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns a simple status response to verify the API is running.
    """
    return {"status": "ok"}
