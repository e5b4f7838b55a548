# users/models/__init__.py

from .activity import UserActivity
from .address import Address
from .user import User, UserManager

__all__ = [
    "User",
    "UserManager",
    "Address",
    "UserActivity",
]
