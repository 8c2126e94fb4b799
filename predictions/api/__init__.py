"""HTTP surface for the prediction dispatch engine."""

from .server import ERROR_STATUS, create_app

__all__ = ["ERROR_STATUS", "create_app"]
