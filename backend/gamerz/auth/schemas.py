"""Pydantic schemas for accounts and resolved identities.

These schemas are used by:
    - POST /api/auth/register, POST /api/auth/login, GET /api/auth/me
    - PATCH /api/admin/users/{user_id}/status
    - IdentityResolver: the identity attached to every real-time connection
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ApprovalStatus(str, Enum):
    """Account approval state set by an administrator.

    Attributes:
        PENDING: Registered, waiting for review. Can log in and browse rooms.
        APPROVED: May join rooms and send messages.
        REJECTED: Registration refused.
        BANNED: Access revoked.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BANNED = "banned"

    @property
    def is_blocked(self) -> bool:
        return self in (ApprovalStatus.REJECTED, ApprovalStatus.BANNED)


class UserRole(str, Enum):
    PLAYER = "player"
    ADMIN = "admin"


class Identity(BaseModel):
    """Server-side identity of an authenticated user.

    Built only from the user store, at authentication time or when an admin
    changes the account status; never from a request payload.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    username: str
    approval_status: ApprovalStatus
    role: UserRole = UserRole.PLAYER

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED

    def to_wire(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "approvalStatus": self.approval_status.value,
        }


class User(BaseModel):
    """A stored account (password hash excluded)."""
    id: str
    username: str
    email: str
    role: UserRole = UserRole.PLAYER
    status: ApprovalStatus = ApprovalStatus.PENDING
    motivation: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def to_identity(self) -> Identity:
        return Identity(
            user_id=self.id,
            username=self.username,
            approval_status=self.status,
            role=self.role,
        )


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=32)
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=128)
    motivation: str = Field(..., min_length=1, max_length=1000, description="Why you want to join")


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    status: ApprovalStatus


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    role: UserRole
    status: ApprovalStatus

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            status=user.status,
        )


class LoginResponse(BaseModel):
    message: str
    user: UserResponse
    token: str = Field(..., description="Same JWT as the http-only cookie, for non-browser clients")
