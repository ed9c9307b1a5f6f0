from enum import Enum
from pydantic import BaseModel


class UserRole(str, Enum):
    CUSTOMER = "Customer"
    ADMIN = "Admin"
    DEV = "Dev"


PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.DEV)


class CurrentUser(BaseModel):
    """Caller identity taken from the bearer token"""
    id: int
    role: UserRole = UserRole.CUSTOMER

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES
