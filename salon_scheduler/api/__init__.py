"""
API Module Initialization

Exports the HTTP router and its error handling for the application factory.
"""

from salon_scheduler.api.routes import router, register_exception_handlers

__all__ = [
    "router",
    "register_exception_handlers",
]
