"""
Root application entry point for the pharmacy accounting cache
==============================================================

This module exposes the FastAPI application instance defined in
``pharma_cache/main.py`` so that deployment tools like Uvicorn can
import ``main:app`` directly from a checkout.

Usage
-----

.. code-block:: bash

    uvicorn main:app --host 127.0.0.1 --port 8000

"""

from pharma_cache.main import app  # noqa: F401 re-export for Uvicorn

__all__ = ["app"]
