"""API routers."""
from .pings import router as pings_router

__all__ = ["pings_router"]
