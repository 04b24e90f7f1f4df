"""
Call history endpoints.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import List, Optional

from duolink.core.memory.db import get_db
from duolink.core.memory.models import CallRecord
from duolink.core.memory.repository import CallRepository, UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["calls"])


class CallStartRequest(BaseModel):
    caller_id: int
    receiver_id: int
    call_type: str = "video"


class CallEndRequest(BaseModel):
    status: str = "completed"


class CallResponse(BaseModel):
    id: int
    caller_id: int
    caller_username: str
    receiver_id: int
    receiver_username: str
    call_type: str
    status: str
    duration: int
    started_at: str
    ended_at: Optional[str] = None


class CallHistoryResponse(BaseModel):
    calls: List[CallResponse]


def call_to_response(call: CallRecord) -> CallResponse:
    return CallResponse(
        id=call.id,
        caller_id=call.caller_id,
        caller_username=call.caller.username,
        receiver_id=call.receiver_id,
        receiver_username=call.receiver.username,
        call_type=call.call_type,
        status=call.status,
        duration=call.duration,
        started_at=call.started_at.isoformat(),
        ended_at=call.ended_at.isoformat() if call.ended_at else None,
    )


def _require_user(db: Session, user_id: int) -> None:
    if not UserRepository.get_by_id(db, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found")


@router.post("/calls", response_model=CallResponse, status_code=status.HTTP_201_CREATED)
def start_call(request: CallStartRequest, db: Session = Depends(get_db)) -> CallResponse:
    """Record the start of a call between two users."""
    if request.caller_id == request.receiver_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot call yourself")
    _require_user(db, request.caller_id)
    _require_user(db, request.receiver_id)
    try:
        call = CallRepository.start(db, request.caller_id, request.receiver_id, request.call_type)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return call_to_response(call)


@router.post("/calls/{call_id}/end", response_model=CallResponse)
def end_call(call_id: int, request: CallEndRequest, db: Session = Depends(get_db)) -> CallResponse:
    """Close a call and compute its duration."""
    try:
        call = CallRepository.end(db, call_id, request.status)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not call:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    return call_to_response(call)


@router.get("/calls/{call_id}", response_model=CallResponse)
def get_call(call_id: int, db: Session = Depends(get_db)) -> CallResponse:
    call = CallRepository.get_by_id(db, call_id)
    if not call:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    return call_to_response(call)


@router.get("/users/{user_id}/calls", response_model=CallHistoryResponse)
def call_history(
    user_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> CallHistoryResponse:
    """Most recent calls the user made or received."""
    _require_user(db, user_id)
    calls = CallRepository.history(db, user_id, limit=limit)
    return CallHistoryResponse(calls=[call_to_response(c) for c in calls])


@router.get("/users/{user_id}/calls/stats")
def call_stats(user_id: int, db: Session = Depends(get_db)):
    _require_user(db, user_id)
    return CallRepository.stats(db, user_id)
