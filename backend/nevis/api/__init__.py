# Nevis API Routes
from nevis.api.router import api_router

__all__ = ["api_router"]
