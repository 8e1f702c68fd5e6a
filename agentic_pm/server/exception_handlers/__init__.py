"""
Exception handlers for the agentic_pm server.

This package contains exception handlers for governance errors and unhandled
exceptions, and a setup function to register them with the FastAPI application.
"""

from .global_handler import setup_exception_handlers

__all__ = ["setup_exception_handlers"]
