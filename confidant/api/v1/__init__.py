"""
API v1 package.

Contains versioned API routes for the anonymous exposure-notification API.
"""

from confidant.api.v1.routes import router

__all__ = ["router"]
