"""
API Routers Package
"""
from .health import router as health_router
from .identify import router as identify_router

__all__ = [
    'health_router',
    'identify_router',
]
