"""
Shared Kernel Module
====================

Shared infrastructure used by the follow-up bounded context and its HTTP
surface: logging, metrics, middleware.

DO NOT add follow-up business logic to the shared kernel.
"""

__version__ = "1.0.0"
