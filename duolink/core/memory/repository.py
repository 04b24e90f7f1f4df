"""
Repository layer for database operations.

Provides high-level methods for the user directory, contacts, active
connections and call history.
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
import logging
from sqlalchemy.orm import Session
from sqlalchemy import or_, func, case
from sqlalchemy.exc import IntegrityError

from duolink.core.memory.models import (
    User,
    Contact,
    ActiveConnection,
    CallRecord,
)


logger = logging.getLogger(__name__)

USER_STATUSES = ("online", "offline", "busy")
CALL_TYPES = ("audio", "video")
CALL_END_STATUSES = ("completed", "missed", "rejected")


class DuplicateError(ValueError):
    """Raised when a unique constraint (username, contact pair) would be violated."""
    pass


def require_active_session(db: Session) -> None:
    """Raise if session is closed; prevents use-after-close."""
    if not db.is_active:
        raise RuntimeError(
            "Session already closed; do not use request session outside request scope "
            "or from another thread."
        )


def safe_refresh(db: Session, obj: Any) -> None:
    """Refresh an object if the session is still usable."""
    if db.is_active:
        db.refresh(obj)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


class UserRepository:
    """Repository for user accounts."""

    @staticmethod
    def create(db: Session, username: str, display_name: Optional[str] = None) -> User:
        """Create a user. New accounts start online, as they are created on first login."""
        require_active_session(db)
        username = username.strip()
        user = User(username=username, display_name=display_name or username, status="online")
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise DuplicateError("Username already exists")
        safe_refresh(db, user)
        logger.info("User created: %s (id=%s)", username, user.id)
        return user

    @staticmethod
    def get_by_id(db: Session, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_by_username(db: Session, username: str) -> Optional[User]:
        """Get user by username."""
        return db.query(User).filter(User.username == username).first()

    @staticmethod
    def search(db: Session, query: str, limit: int = 10) -> List[User]:
        """Search users by username or display name."""
        pattern = f"%{query}%"
        return (
            db.query(User)
            .filter(or_(User.username.like(pattern), User.display_name.like(pattern)))
            .order_by(User.username)
            .limit(limit)
            .all()
        )

    @staticmethod
    def update_status(db: Session, user_id: int, status: str) -> bool:
        """Set presence status and bump last_seen_at."""
        require_active_session(db)
        if status not in USER_STATUSES:
            raise ValueError(f"status must be one of {', '.join(USER_STATUSES)}")
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            return False
        user.status = status
        user.last_seen_at = datetime.utcnow()
        _commit(db)
        return True

    @staticmethod
    def count(db: Session) -> int:
        return db.query(func.count(User.id)).scalar() or 0


class ContactRepository:
    """Repository for contact lists."""

    @staticmethod
    def add(db: Session, user_id: int, contact_username: str, nickname: Optional[str] = None) -> Contact:
        """
        Add contact_username to user_id's contacts.

        Raises:
            LookupError: the contact user does not exist
            ValueError: adding yourself
            DuplicateError: contact already present
        """
        require_active_session(db)
        contact_user = UserRepository.get_by_username(db, contact_username)
        if not contact_user:
            raise LookupError("User not found")
        if contact_user.id == user_id:
            raise ValueError("Cannot add yourself as contact")
        contact = Contact(user_id=user_id, contact_user_id=contact_user.id, nickname=nickname)
        db.add(contact)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise DuplicateError("Contact already exists")
        safe_refresh(db, contact)
        return contact

    @staticmethod
    def get(db: Session, user_id: int, contact_user_id: int) -> Optional[Contact]:
        return (
            db.query(Contact)
            .filter(Contact.user_id == user_id, Contact.contact_user_id == contact_user_id)
            .first()
        )

    @staticmethod
    def list_for_user(db: Session, user_id: int) -> List[Contact]:
        """Non-blocked contacts, favorites first, then by display name."""
        return (
            db.query(Contact)
            .join(User, Contact.contact_user_id == User.id)
            .filter(Contact.user_id == user_id, Contact.is_blocked.is_(False))
            .order_by(Contact.is_favorite.desc(), User.display_name)
            .all()
        )

    @staticmethod
    def remove(db: Session, user_id: int, contact_user_id: int) -> bool:
        require_active_session(db)
        deleted = (
            db.query(Contact)
            .filter(Contact.user_id == user_id, Contact.contact_user_id == contact_user_id)
            .delete()
        )
        _commit(db)
        return deleted > 0

    @staticmethod
    def set_blocked(db: Session, user_id: int, contact_user_id: int, blocked: bool) -> bool:
        require_active_session(db)
        contact = ContactRepository.get(db, user_id, contact_user_id)
        if not contact:
            return False
        contact.is_blocked = blocked
        _commit(db)
        return True

    @staticmethod
    def toggle_favorite(db: Session, user_id: int, contact_user_id: int) -> Optional[bool]:
        """Flip the favorite flag. Returns the new value, or None if no such contact."""
        require_active_session(db)
        contact = ContactRepository.get(db, user_id, contact_user_id)
        if not contact:
            return None
        contact.is_favorite = not contact.is_favorite
        _commit(db)
        return contact.is_favorite


class ConnectionRepository:
    """Repository for relay connections bound to users."""

    @staticmethod
    def add(
        db: Session,
        user_id: int,
        connection_id: str,
        room_id: Optional[str] = None,
        connection_type: str = "chat",
    ) -> ActiveConnection:
        """Record a connection, replacing any earlier row with the same connection_id."""
        require_active_session(db)
        db.query(ActiveConnection).filter(ActiveConnection.connection_id == connection_id).delete()
        row = ActiveConnection(
            user_id=user_id,
            connection_id=connection_id,
            room_id=room_id,
            connection_type=connection_type,
        )
        db.add(row)
        _commit(db)
        logger.debug("Connection recorded: user %s, connection %s", user_id, connection_id)
        return row

    @staticmethod
    def remove(db: Session, connection_id: str) -> bool:
        require_active_session(db)
        deleted = (
            db.query(ActiveConnection)
            .filter(ActiveConnection.connection_id == connection_id)
            .delete()
        )
        _commit(db)
        if deleted:
            logger.debug("Connection removed: %s", connection_id)
        return deleted > 0

    @staticmethod
    def update_room(db: Session, connection_id: str, room_id: Optional[str]) -> bool:
        """Track the room a bound connection is in. Returns False if no such row."""
        require_active_session(db)
        row = ConnectionRepository.get_by_connection_id(db, connection_id)
        if not row:
            return False
        row.room_id = room_id
        _commit(db)
        return True

    @staticmethod
    def get_by_connection_id(db: Session, connection_id: str) -> Optional[ActiveConnection]:
        return (
            db.query(ActiveConnection)
            .filter(ActiveConnection.connection_id == connection_id)
            .first()
        )

    @staticmethod
    def list_for_user(db: Session, user_id: int) -> List[ActiveConnection]:
        return (
            db.query(ActiveConnection)
            .filter(ActiveConnection.user_id == user_id)
            .order_by(ActiveConnection.id)
            .all()
        )

    @staticmethod
    def list_active_users(db: Session) -> List[ActiveConnection]:
        return (
            db.query(ActiveConnection)
            .join(User)
            .order_by(User.username, ActiveConnection.id)
            .all()
        )

    @staticmethod
    def clear(db: Session) -> int:
        """Drop every row; connections never survive a restart."""
        require_active_session(db)
        deleted = db.query(ActiveConnection).delete()
        _commit(db)
        return deleted


class CallRepository:
    """Repository for call history."""

    @staticmethod
    def start(db: Session, caller_id: int, receiver_id: int, call_type: str = "video") -> CallRecord:
        require_active_session(db)
        if call_type not in CALL_TYPES:
            raise ValueError(f"call_type must be one of {', '.join(CALL_TYPES)}")
        call = CallRecord(
            caller_id=caller_id,
            receiver_id=receiver_id,
            call_type=call_type,
            status="ongoing",
            started_at=datetime.utcnow(),
        )
        db.add(call)
        _commit(db)
        safe_refresh(db, call)
        logger.info("Call started: %s -> %s (%s)", caller_id, receiver_id, call_type)
        return call

    @staticmethod
    def end(db: Session, call_id: int, status: str = "completed") -> Optional[CallRecord]:
        """Close an ongoing call and compute its duration. Returns None if unknown."""
        require_active_session(db)
        if status not in CALL_END_STATUSES:
            raise ValueError(f"status must be one of {', '.join(CALL_END_STATUSES)}")
        call = CallRepository.get_by_id(db, call_id)
        if not call:
            return None
        ended_at = datetime.utcnow()
        call.status = status
        call.ended_at = ended_at
        call.duration = max(0, int((ended_at - call.started_at).total_seconds()))
        _commit(db)
        safe_refresh(db, call)
        logger.info("Call ended: id=%s duration=%ss status=%s", call_id, call.duration, status)
        return call

    @staticmethod
    def get_by_id(db: Session, call_id: int) -> Optional[CallRecord]:
        return db.query(CallRecord).filter(CallRecord.id == call_id).first()

    @staticmethod
    def history(db: Session, user_id: int, limit: int = 50) -> List[CallRecord]:
        return (
            db.query(CallRecord)
            .filter(or_(CallRecord.caller_id == user_id, CallRecord.receiver_id == user_id))
            .order_by(CallRecord.started_at.desc(), CallRecord.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def stats(db: Session, user_id: int) -> Dict[str, int]:
        row = (
            db.query(
                func.count(CallRecord.id),
                func.sum(case((CallRecord.status == "completed", 1), else_=0)),
                func.sum(case((CallRecord.status == "missed", 1), else_=0)),
                func.sum(CallRecord.duration),
                func.avg(CallRecord.duration),
            )
            .filter(or_(CallRecord.caller_id == user_id, CallRecord.receiver_id == user_id))
            .one()
        )
        total, completed, missed, total_duration, avg_duration = row
        return {
            "total_calls": total or 0,
            "completed_calls": int(completed or 0),
            "missed_calls": int(missed or 0),
            "total_duration": int(total_duration or 0),
            "avg_duration": round(avg_duration or 0),
        }
