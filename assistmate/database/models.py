import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from assistmate.database.connection import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestStatus(str, enum.Enum):
    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.REJECTED})


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    firebase_uid = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True, index=True)
    username = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    user_type = Column(String(50), nullable=True)
    avatar = Column(Text, nullable=True)
    fmc_token = Column(Text, nullable=True, unique=True)
    longitude = Column(Float, nullable=True)
    latitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    requests = relationship(
        "Request",
        back_populates="user",
        foreign_keys="Request.user_id",
        order_by="Request.id",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def display_name(self) -> str:
        return self.username or self.full_name

    @property
    def has_location(self) -> bool:
        return self.longitude is not None and self.latitude is not None


class Request(Base):
    __tablename__ = "requests"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)
    other_category = Column(String(100), nullable=True)
    description = Column(Text, nullable=False)
    due_date_time = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        Enum(RequestStatus, native_enum=False, length=20),
        default=RequestStatus.CREATED,
        nullable=False,
        index=True,
    )
    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    resolver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    offer_paid = Column(Boolean, nullable=True)
    offer_payment_amount = Column(Float, nullable=True)
    offer_currency = Column(String(10), nullable=True)
    offer_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User", back_populates="requests", foreign_keys=[user_id], lazy="selectin")
    resolver = relationship("User", foreign_keys=[resolver_id], lazy="selectin")
    candidates = relationship(
        "RequestCandidate",
        order_by="RequestCandidate.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    chats = relationship(
        "Chat",
        back_populates="request",
        order_by="Chat.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def temp_resolver_ids(self) -> list:
        return [candidate.user_id for candidate in self.candidates]

    @property
    def participant_ids(self) -> list:
        return [uid for uid in (self.user_id, self.resolver_id) if uid is not None]

    @property
    def has_offer(self) -> bool:
        return any(
            value is not None
            for value in (self.offer_paid, self.offer_payment_amount, self.offer_currency, self.offer_reason)
        )


class RequestCandidate(Base):
    __tablename__ = "request_candidates"
    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    __table_args__ = (UniqueConstraint('request_id', 'user_id', name='_request_candidate_uc'),)


class Chat(Base):
    __tablename__ = "chats"
    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, index=True)
    participants = Column(JSON, nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    request = relationship("Request", back_populates="chats")
    sender = relationship("User", lazy="selectin")


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    trigger = Column(String(50), nullable=False)
    notification_id = Column(String(64), nullable=False)
    due_date_time = Column(DateTime(timezone=True), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
