"""
API Routers
Pipeline submission and status live in builds; one module per resource.
"""

from app.routers import builds

__all__ = ["builds"]
