"""
User account endpoints: register, login, lookup, search, presence.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import List, Optional

from duolink.core.memory.db import get_db
from duolink.core.memory.models import User
from duolink.core.memory.repository import (
    CallRepository,
    ConnectionRepository,
    ContactRepository,
    DuplicateError,
    UserRepository,
)
from duolink.core.api.contacts import ContactResponse, contact_to_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["users"])


# Request/Response Models

class UserCreateRequest(BaseModel):
    """Request to register a user."""
    username: str = Field(min_length=1, max_length=64)
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    """Login by username; unknown usernames are registered on the fly."""
    username: str = Field(min_length=1, max_length=64)
    display_name: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class UserResponse(BaseModel):
    """User information response."""
    id: int
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    status: str
    last_seen_at: Optional[str] = None
    created_at: str


class UsersListResponse(BaseModel):
    users: List[UserResponse]


class LoginResponse(BaseModel):
    user: UserResponse
    created: bool


class CallStatsResponse(BaseModel):
    total_calls: int
    completed_calls: int
    missed_calls: int
    total_duration: int
    avg_duration: int


class UserDetailResponse(UserResponse):
    """User with contacts and call statistics."""
    contacts: List[ContactResponse]
    call_stats: CallStatsResponse


class ActiveUserResponse(BaseModel):
    id: int
    username: str
    display_name: Optional[str] = None
    status: str
    connection_id: str
    room_id: Optional[str] = None


class ActiveUsersResponse(BaseModel):
    users: List[ActiveUserResponse]


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
        status=user.status,
        last_seen_at=user.last_seen_at.isoformat() if user.last_seen_at else None,
        created_at=user.created_at.isoformat(),
    )


def get_user_or_404(db: Session, user_id: int) -> User:
    user = UserRepository.get_by_id(db, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


# Endpoints

@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(request: UserCreateRequest, db: Session = Depends(get_db)) -> UserResponse:
    """Register a new user."""
    username = request.username.strip()
    if not username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required")
    try:
        user = UserRepository.create(db, username, request.display_name)
    except DuplicateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return user_to_response(user)


@router.post("/users/login", response_model=LoginResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)) -> LoginResponse:
    """
    Log in by username.

    Existing users are marked online; unknown usernames are registered.
    """
    username = request.username.strip()
    if not username:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username is required")
    try:
        user = UserRepository.get_by_username(db, username)
        created = False
        if user:
            UserRepository.update_status(db, user.id, "online")
        else:
            user = UserRepository.create(db, username, request.display_name)
            created = True
        logger.info("User logged in: %s (created=%s)", username, created)
        return LoginResponse(user=user_to_response(user), created=created)
    except DuplicateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.error(f"Error logging in {username}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to log in: {str(e)}",
        )


@router.get("/users", response_model=UsersListResponse)
def search_users(
    q: str = Query("", max_length=64),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
) -> UsersListResponse:
    """Search users by username or display name."""
    users = UserRepository.search(db, q.strip(), limit=limit)
    return UsersListResponse(users=[user_to_response(u) for u in users])


@router.get("/users/active", response_model=ActiveUsersResponse)
def active_users(db: Session = Depends(get_db)) -> ActiveUsersResponse:
    """Users with a relay connection bound right now."""
    rows = ConnectionRepository.list_active_users(db)
    return ActiveUsersResponse(
        users=[
            ActiveUserResponse(
                id=row.user.id,
                username=row.user.username,
                display_name=row.user.display_name,
                status=row.user.status,
                connection_id=row.connection_id,
                room_id=row.room_id,
            )
            for row in rows
        ]
    )


@router.get("/users/{user_id}", response_model=UserDetailResponse)
def get_user(user_id: int, db: Session = Depends(get_db)) -> UserDetailResponse:
    """Get a user with contacts and call statistics."""
    user = get_user_or_404(db, user_id)
    contacts = ContactRepository.list_for_user(db, user_id)
    stats = CallRepository.stats(db, user_id)
    return UserDetailResponse(
        **user_to_response(user).model_dump(),
        contacts=[contact_to_response(c) for c in contacts],
        call_stats=CallStatsResponse(**stats),
    )


@router.patch("/users/{user_id}/status", response_model=UserResponse)
def update_status(
    user_id: int,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
) -> UserResponse:
    """Set presence status (online, offline, busy)."""
    get_user_or_404(db, user_id)
    try:
        UserRepository.update_status(db, user_id, request.status)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return user_to_response(get_user_or_404(db, user_id))
