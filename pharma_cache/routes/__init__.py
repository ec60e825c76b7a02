"""
Route package for the pharmacy cache.

Each module defines an ``APIRouter`` that groups related endpoints;
``pharma_cache.main`` includes them in the application.
"""

__all__ = ["cache"]
