"""
pharma_cache package
--------------------

Time-windowed cache of the pharmacy accounting data together with the
FastAPI application that serves it.  Importing ``pharma_cache`` loads
:mod:`pharma_cache.main` and exposes the ``app`` instance for ASGI
servers.
"""

from .main import app  # noqa: F401
