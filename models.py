import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship

from db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    DONE = "Done"


class User(Base):
    """Application user.

    Fields:
    - username / email: both unique, login is by username
    - hashed_password: Argon2 hash, never the plain password
    - roles: JSON list of role names ("Admin", "User")
    - country, phone_number, image_path: profile data
    """
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    phone_number = Column(String(32), nullable=True)
    country = Column(String(100), nullable=False)
    image_path = Column(String(255), nullable=True)
    # role validation happens in identity.IdentityStore
    roles = Column(JSON, default=lambda: ["User"], nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Task(Base):
    """A task owned by exactly one user.

    Deleting the owner deletes the tasks (ON DELETE CASCADE).
    """
    __tablename__ = "tasks"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(Enum(TaskStatus, name="task_status", values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=TaskStatus.PENDING)
    due_date = Column(DateTime(timezone=True), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    owner = relationship("User", back_populates="tasks")
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class RefreshToken(Base):
    """Stored refresh token, one row per user.

    Only the HMAC of the raw token is kept. The unique constraint on user_id
    backs the single-slot rule: issuing a new token replaces the old row.
    """
    __tablename__ = "refresh_tokens"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    user = relationship("User", back_populates="refresh_tokens")
    token_hash = Column(String(128), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    created_by_ip = Column(String(100), nullable=False, default="unknown")


# Relationships defined on User for ORM convenience
User.tasks = relationship("Task", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)
User.refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
