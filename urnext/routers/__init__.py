from urnext.routers.api import router as api_router
from urnext.routers.stream import router as stream_router

__all__ = ["api_router", "stream_router"]
