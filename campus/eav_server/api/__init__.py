"""
Campus EAV HTTP gateway.

A FastAPI application exposing EavService under /api/v1.
"""

from .app import create_app
from .config import Settings

__all__ = ["Settings", "create_app"]
