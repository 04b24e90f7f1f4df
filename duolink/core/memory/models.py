"""
SQLAlchemy models for the Duolink user directory.

Defines the schema for users, contacts, active relay connections and call history.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean,
    DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class User(Base):
    """A registered account that can bind to relay connections."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    status = Column(String(20), default="offline", nullable=False)  # online, offline, busy
    last_seen_at = Column(DateTime, default=func.now(), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    contacts = relationship(
        "Contact",
        foreign_keys="Contact.user_id",
        back_populates="owner",
        cascade="all, delete-orphan",
    )
    connections = relationship("ActiveConnection", back_populates="user", cascade="all, delete-orphan")


class Contact(Base):
    """One entry in a user's contact list."""
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    contact_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    nickname = Column(String(255), nullable=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    is_favorite = Column(Boolean, default=False, nullable=False)
    added_at = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    owner = relationship("User", foreign_keys=[user_id], back_populates="contacts")
    contact_user = relationship("User", foreign_keys=[contact_user_id])

    __table_args__ = (
        UniqueConstraint("user_id", "contact_user_id", name="uq_contact_pair"),
    )


class ActiveConnection(Base):
    """A relay connection currently bound to a user. A user may hold several."""
    __tablename__ = "active_connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    connection_id = Column(String(64), unique=True, nullable=False)
    room_id = Column(String(255), nullable=True)
    connection_type = Column(String(20), default="chat", nullable=False)  # chat, call
    connected_at = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    user = relationship("User", back_populates="connections")


class CallRecord(Base):
    """Call history entry between two users."""
    __tablename__ = "call_history"

    id = Column(Integer, primary_key=True, index=True)
    caller_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    call_type = Column(String(20), nullable=False)  # audio, video
    status = Column(String(20), nullable=False)  # ongoing, completed, missed, rejected
    duration = Column(Integer, default=0, nullable=False)  # seconds
    started_at = Column(DateTime, default=func.now(), nullable=False)
    ended_at = Column(DateTime, nullable=True)

    # Relationships
    caller = relationship("User", foreign_keys=[caller_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (
        Index("idx_call_history_participants", "caller_id", "receiver_id"),
    )
