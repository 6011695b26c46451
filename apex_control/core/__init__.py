"""
Core utilities and configuration for the Apex control plane.

This package provides the shared domain models, the error taxonomy, settings
and logging configuration used by every engine.
"""

from apex_control.core.logging_config import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
