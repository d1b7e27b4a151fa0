"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from reconciler.core.config import get_settings, Settings, EnvironmentMode, RetryBackoff

__all__ = ["get_settings", "Settings", "EnvironmentMode", "RetryBackoff"]
