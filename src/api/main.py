"""
FastAPI application entry point.

HTTP adapter over JobLifecycleService. Every lifecycle rule lives in
src.lifecycle; routers only translate requests and map errors.
"""

from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI

from src import __version__
from src.infra.config import LifecycleSettings
from src.infra.logging_config import setup_logging
from .routers import jobs, workflow
from ._lifecycle_state import init_lifecycle_service, shutdown_lifecycle_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown of resources:
    - Logging and settings from environment (.env supported)
    - Lifecycle service singleton (store, gateway, dispatcher)
    """
    # Startup
    load_dotenv()
    settings = LifecycleSettings.from_env()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
    init_lifecycle_service(settings)

    yield

    # Shutdown - let in-flight notifications finish
    shutdown_lifecycle_service()

# Tag metadata for Swagger UI
tags_metadata = [
    {
        "name": "jobs",
        "description": "Repair job lifecycle - open jobs, request transitions, read history",
    },
    {
        "name": "workflow",
        "description": "Lifecycle description - states, edges, roles and SLA escalation",
    },
]

app = FastAPI(
    title="RepairX Job Lifecycle API",
    lifespan=lifespan,
    description="""
## RepairX Job Lifecycle API

Moves repair jobs through their lifecycle with role checks, payload
validation, optimistic concurrency and idempotent retries.

### Errors
- `403` role not allowed on the edge
- `404` unknown job
- `409` version conflict (reload and retry)
- `422` validation failure, body carries `code` and `field`

### Usage
```bash
# Start server
uvicorn src.api.main:app --host 127.0.0.1 --port 8000

# Start diagnosis
curl -X POST http://localhost:8000/jobs/<job_id>/transitions \\
  -H "Content-Type: application/json" \\
  -H "Idempotency-Key: 7c1e..." \\
  -d '{"target_state": "IN_DIAGNOSIS", "actor": {"actor_id": "t-1", "role": "TECHNICIAN"}}'
```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=tags_metadata,
)


# Health check (operational endpoint)
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
app.include_router(workflow.router, prefix="/workflow", tags=["workflow"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
