from __future__ import annotations

from .error_middleware import setup_error_middleware
from .polling import poll_with_single_instance_guard

__all__ = [
    "poll_with_single_instance_guard",
    "setup_error_middleware",
]
