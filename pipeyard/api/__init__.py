"""FastAPI routes for the pipe yard workflow engine."""

from pipeyard.api.audit import router as audit_router
from pipeyard.api.inventory import router as inventory_router
from pipeyard.api.loads import router as loads_router
from pipeyard.api.locations import router as locations_router
from pipeyard.api.requests import router as requests_router

__all__ = [
    "audit_router",
    "inventory_router",
    "loads_router",
    "locations_router",
    "requests_router",
]
