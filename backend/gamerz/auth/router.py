"""Auth router: registration, login and admin approval.

Endpoints:
    POST  /api/auth/register                 - Register (status starts as pending)
    POST  /api/auth/login                    - Log in, sets the http-only session cookie
    POST  /api/auth/logout                   - Clear the session cookie
    GET   /api/auth/me                       - Current user
    GET   /api/admin/users                   - List users, optionally by status (admin)
    PATCH /api/admin/users/{user_id}/status  - Approve, reject or ban a user (admin)
"""
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from gamerz.chat.hub import ChatHub, get_hub

from .dependencies import get_current_identity, get_user_service, require_admin
from .schemas import (
    ApprovalStatus,
    Identity,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    StatusUpdateRequest,
    UserResponse,
)
from .service import AccountBlocked, AccountExists, InvalidCredentials, UserNotFound, UserService
from .tokens import issue_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])

PENDING_LOGIN_MESSAGE = (
    "Login successful. Your account is pending approval. "
    "You can view chatrooms but cannot join them yet."
)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    users: UserService = Depends(get_user_service),
) -> dict:
    """Register a new player. An administrator must approve the account."""
    # Password hashing is CPU-bound; keep it off the event loop.
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(
            None, users.register, body.username, body.email, body.password, body.motivation
        )
    except AccountExists as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"message": "User registered successfully. Awaiting admin approval."}


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    users: UserService = Depends(get_user_service),
) -> LoginResponse:
    """Check credentials and set the session cookie.

    Pending users can log in; rejected and banned users get 403.
    """
    loop = asyncio.get_running_loop()
    try:
        user = await loop.run_in_executor(None, users.authenticate, body.email, body.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc))
    except AccountBlocked as exc:
        raise HTTPException(status_code=403, detail=str(exc))

    config = request.app.state.config
    token = issue_token(user, config)
    response.set_cookie(
        key=config.auth.cookie_name,
        value=token,
        httponly=True,
        secure=config.auth.cookie_secure,
        samesite="none" if config.auth.cookie_secure else "lax",
        max_age=config.auth.token_expire_minutes * 60,
    )

    message = "Login successful"
    if user.status == ApprovalStatus.PENDING:
        message = PENDING_LOGIN_MESSAGE
    logger.info("User %s logged in (status=%s)", user.username, user.status.value)
    return LoginResponse(message=message, user=UserResponse.from_user(user), token=token)


@router.post("/logout")
async def logout(request: Request, response: Response) -> dict:
    response.delete_cookie(request.app.state.config.auth.cookie_name)
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
async def current_user(
    identity: Identity = Depends(get_current_identity),
    users: UserService = Depends(get_user_service),
) -> UserResponse:
    user = users.get(identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse.from_user(user)


@admin_router.get("/users", response_model=List[UserResponse])
async def list_users(
    status_filter: Optional[ApprovalStatus] = Query(None, alias="status"),
    _admin: Identity = Depends(require_admin),
    users: UserService = Depends(get_user_service),
) -> List[UserResponse]:
    return [UserResponse.from_user(u) for u in users.list_users(status_filter)]


@admin_router.patch("/users/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: str,
    body: StatusUpdateRequest,
    admin: Identity = Depends(require_admin),
    users: UserService = Depends(get_user_service),
    hub: ChatHub = Depends(get_hub),
) -> UserResponse:
    """Set a user's approval status.

    The change reaches the user's live chat connections at once: a pending
    user leaves every room, a rejected or banned user is also disconnected.
    """
    try:
        user = users.set_status(user_id, body.status)
    except UserNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    live = hub.apply_status(user.to_identity())
    logger.info(
        "Admin %s set user %s to %s (%d live connection(s) updated)",
        admin.username,
        user_id,
        body.status.value,
        live,
    )
    return UserResponse.from_user(user)
