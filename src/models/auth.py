"""
Developer portal identity
"""

from enum import Enum

from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    DEVELOPER = "developer"
    ADMIN = "admin"


class CurrentPrincipal(BaseModel):
    """Developer resolved from a portal bearer token; owns API keys and webhooks"""

    user_id: str
    email: EmailStr
    role: UserRole = UserRole.DEVELOPER
