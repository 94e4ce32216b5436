"""
Follow-up Interfaces Layer
==========================

Interface adapters (controllers) for the follow-up queue module.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.followup.interfaces.controllers import router as queue_router

__all__ = ["queue_router"]
