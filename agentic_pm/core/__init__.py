"""
Core utilities and configuration for agentic_pm.

This package provides shared configuration (environment-driven settings) and
logging setup.
"""

from agentic_pm.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
