"""
Utilities package for meterhub.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from meterhub.utils.logging import ConsoleFormatter, configure_logging, get_logger, record_context

__all__ = [
    "ConsoleFormatter",
    "configure_logging",
    "get_logger",
    "record_context",
]
