"""Cross-cutting utilities for the orchestrator.

Utilities should be pure functions or singletons without business logic.

Modules:
    logging: structlog JSON configuration and per-request context binding.
"""

from reela.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
)

__all__ = [
    "bind_request_context",
    "clear_request_context",
    "configure_logging",
]
