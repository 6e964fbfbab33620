"""
User data models for internal use.
"""

from dataclasses import dataclass


@dataclass
class User:
    """Authenticated uploader, as identified by the login gateway."""

    id: str
    username: str = "Unknown User"
    avatar: str = ""
