"""API Routes"""

from . import tasks, wallet

__all__ = ["tasks", "wallet"]
