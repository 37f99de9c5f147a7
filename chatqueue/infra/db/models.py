from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from chatqueue.domain.enums import (
    Department,
    MessageDirection,
    MessageStatus,
    OperatorProfile,
    SessionDirection,
    SessionStatus,
)


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=_enum_values)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Operator(Base, TimestampMixin):
    __tablename__ = "operators"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    department: Mapped[Department | None] = mapped_column(
        _enum(Department, "department"), nullable=True, index=True
    )
    profile: Mapped[OperatorProfile] = mapped_column(
        _enum(OperatorProfile, "operator_profile"),
        nullable=False,
        default=OperatorProfile.OPERATOR,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    address: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    push_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    sessions: Mapped[list["ChatSession"]] = relationship(back_populates="customer")


class ChatSession(Base, TimestampMixin):
    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index(
            "uq_chat_sessions_active_address",
            "customer_address",
            unique=True,
            postgresql_where=text("status IN ('bot', 'waiting', 'service')"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    session_key: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("customers.id", ondelete="RESTRICT"), index=True
    )
    customer_address: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    instance: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        _enum(SessionStatus, "session_status"),
        nullable=False,
        default=SessionStatus.BOT,
        index=True,
    )
    direction: Mapped[SessionDirection] = mapped_column(
        _enum(SessionDirection, "session_direction"),
        nullable=False,
        default=SessionDirection.INBOUND,
    )
    department: Mapped[Department | None] = mapped_column(
        _enum(Department, "department"), nullable=True, index=True
    )
    requested_operator_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True, index=True
    )
    assigned_operator_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True, index=True
    )
    supervisor_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True, index=True
    )
    bot_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    bot_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    customer: Mapped[Customer] = relationship(back_populates="sessions")
    tabulations: Mapped[list["Tabulation"]] = relationship(back_populates="session")


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    gateway_message_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    session_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("chat_sessions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    address: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    remote_jid: Mapped[str] = mapped_column(String(120), nullable=False)
    instance: Mapped[str] = mapped_column(String(120), nullable=False)
    from_me: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    push_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message_type: Mapped[str] = mapped_column(String(60), nullable=False, default="conversation")
    direction: Mapped[MessageDirection] = mapped_column(
        _enum(MessageDirection, "message_direction"), nullable=False
    )
    status: Mapped[MessageStatus] = mapped_column(
        _enum(MessageStatus, "message_status"), nullable=False, default=MessageStatus.PENDING
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    message_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Tabulation(Base):
    __tablename__ = "tabulations"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    session_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("chat_sessions.id", ondelete="CASCADE"), index=True
    )
    outcome_code: Mapped[str] = mapped_column(String(80), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tabulated_by: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    session: Mapped[ChatSession] = relationship(back_populates="tabulations")
