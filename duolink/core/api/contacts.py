"""
Contact list endpoints.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from typing import List, Optional

from duolink.core.memory.db import get_db
from duolink.core.memory.models import Contact
from duolink.core.memory.repository import ContactRepository, DuplicateError, UserRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users/{user_id}/contacts", tags=["contacts"])


class ContactCreateRequest(BaseModel):
    """Add a contact by username."""
    username: str = Field(min_length=1, max_length=64)
    nickname: Optional[str] = None


class ContactResponse(BaseModel):
    contact_user_id: int
    username: str
    display_name: Optional[str] = None
    nickname: Optional[str] = None
    status: str
    is_blocked: bool
    is_favorite: bool
    added_at: str


class ContactsListResponse(BaseModel):
    contacts: List[ContactResponse]


class ContactActionResponse(BaseModel):
    success: bool
    is_favorite: Optional[bool] = None


def contact_to_response(contact: Contact) -> ContactResponse:
    other = contact.contact_user
    return ContactResponse(
        contact_user_id=contact.contact_user_id,
        username=other.username,
        display_name=other.display_name,
        nickname=contact.nickname,
        status=other.status,
        is_blocked=contact.is_blocked,
        is_favorite=contact.is_favorite,
        added_at=contact.added_at.isoformat(),
    )


def _require_user(db: Session, user_id: int) -> None:
    if not UserRepository.get_by_id(db, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")


@router.get("", response_model=ContactsListResponse)
def list_contacts(user_id: int, db: Session = Depends(get_db)) -> ContactsListResponse:
    """Non-blocked contacts, favorites first."""
    _require_user(db, user_id)
    contacts = ContactRepository.list_for_user(db, user_id)
    return ContactsListResponse(contacts=[contact_to_response(c) for c in contacts])


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
def add_contact(
    user_id: int,
    request: ContactCreateRequest,
    db: Session = Depends(get_db),
) -> ContactResponse:
    _require_user(db, user_id)
    try:
        contact = ContactRepository.add(db, user_id, request.username.strip(), request.nickname)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except DuplicateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info("User %s added contact %s", user_id, contact.contact_user_id)
    return contact_to_response(contact)


@router.delete("/{contact_user_id}", response_model=ContactActionResponse)
def remove_contact(user_id: int, contact_user_id: int, db: Session = Depends(get_db)) -> ContactActionResponse:
    if not ContactRepository.remove(db, user_id, contact_user_id):
        raise _not_found()
    return ContactActionResponse(success=True)


@router.post("/{contact_user_id}/block", response_model=ContactActionResponse)
def block_contact(user_id: int, contact_user_id: int, db: Session = Depends(get_db)) -> ContactActionResponse:
    if not ContactRepository.set_blocked(db, user_id, contact_user_id, True):
        raise _not_found()
    return ContactActionResponse(success=True)


@router.post("/{contact_user_id}/unblock", response_model=ContactActionResponse)
def unblock_contact(user_id: int, contact_user_id: int, db: Session = Depends(get_db)) -> ContactActionResponse:
    if not ContactRepository.set_blocked(db, user_id, contact_user_id, False):
        raise _not_found()
    return ContactActionResponse(success=True)


@router.post("/{contact_user_id}/favorite", response_model=ContactActionResponse)
def toggle_favorite(user_id: int, contact_user_id: int, db: Session = Depends(get_db)) -> ContactActionResponse:
    """Flip the favorite flag."""
    is_favorite = ContactRepository.toggle_favorite(db, user_id, contact_user_id)
    if is_favorite is None:
        raise _not_found()
    return ContactActionResponse(success=True, is_favorite=is_favorite)
