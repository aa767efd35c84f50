"""
HTTP API for plaixt.

- create_app: FastAPI application factory
- StoreService: the reloadable snapshot behind the routes
"""

from .app import create_app
from .service import StoreNotLoaded, StoreService

__all__ = ["create_app", "StoreNotLoaded", "StoreService"]
