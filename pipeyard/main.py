"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pipeyard.api.audit import router as audit_router
from pipeyard.api.dependencies import status_code_for
from pipeyard.api.inventory import router as inventory_router
from pipeyard.api.loads import router as loads_router
from pipeyard.api.locations import router as locations_router
from pipeyard.api.requests import router as requests_router
from pipeyard.config import settings
from pipeyard.services.errors import EngineError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Pipe Yard Workflow Engine",
    description="Capacity-constrained storage requests, trucking loads and rack inventory",
    version="0.1.0",
    debug=settings.debug,
)

# Include API routers
app.include_router(locations_router)
app.include_router(requests_router)
app.include_router(loads_router)
app.include_router(inventory_router)
app.include_router(audit_router)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Turn engine errors into structured JSON error bodies."""
    status_code = status_code_for(exc)
    if status_code >= 409:
        logger.warning("%s %s refused: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
