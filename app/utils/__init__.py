"""
Utility functions for the CoOwnSign backend
"""

from .security import get_current_user_id, create_access_token

__all__ = [
    "get_current_user_id",
    "create_access_token",
]
