# Observability package
from .logging import get_logger, set_run_id, setup_logging

__all__ = [
    "get_logger",
    "setup_logging",
    "set_run_id",
]
