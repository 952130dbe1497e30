"""FastAPI application entry point.

Application Lifecycle Diagram
=============================
::
    ┌──────────────────┐
    │ lifespan startup │
    │ init_db()        │
    │ manager.init()   │──► strategy, caches, pool, aggregator, reporter
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ Serve HTTP       │
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ lifespan shutdown│
    │ manager.cleanup()│──► reporter, final flush, pool, Redis
    │ close_db()       │
    └──────────────────┘

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn shorturl.main:app --host 0.0.0.0 --port 8080

**Step 2 — Shorten and follow**::
    curl -X POST http://localhost:8080/api/url/shorten \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com", "expire_seconds": 3600}'
    curl -i http://localhost:8080/<short_code>

Key Behaviours
===============
- A bad strategy or alphabet setting aborts startup with ConfigurationError.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from shorturl.config import get_settings
from shorturl.database import close_db, init_db
from shorturl.dependencies import _service_manager
from shorturl.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize(settings)
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short URL generation and tiered resolution",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
