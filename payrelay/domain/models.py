from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# JSONB on Postgres, plain JSON elsewhere so sqlite test databases share the schema.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class Client(Base):
    __tablename__ = "clients"
    # Fetch server-side timestamps on flush so async sessions never lazy-load them.
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    # Network till/paybill number used to attribute unsolicited collections.
    short_code: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    # HMAC key for outbound webhooks; clients without one cannot receive notifications.
    webhook_secret: Mapped[str | None] = mapped_column(String, nullable=True)
    webhooks_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    endpoints: Mapped[list["ClientWebhookEndpoint"]] = relationship(
        back_populates="client", cascade="all, delete-orphan", lazy="selectin"
    )


class ClientWebhookEndpoint(Base):
    __tablename__ = "client_webhook_endpoints"
    __table_args__ = (UniqueConstraint("client_id", "kind", name="uq_client_webhook_endpoints_client_kind"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), index=True)
    kind: Mapped[str] = mapped_column(String)
    url: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    client: Mapped[Client] = relationship(back_populates="endpoints")


class Operation(Base):
    __tablename__ = "operations"
    # Fetch server-side timestamps on flush so async sessions never lazy-load them.
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (Index("ix_operations_client_created", "client_id", "created_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), index=True)
    kind: Mapped[str] = mapped_column(String)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2))
    phone_number: Mapped[str] = mapped_column(String)
    account_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    result_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    result_desc: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Receipt number issued by the network on completion.
    network_reference: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    network_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    raw_request: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    raw_response: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    callback_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    # Set once by bind(); guards against binding a second network submission.
    correlated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    correlations: Mapped[list["OperationCorrelation"]] = relationship(
        back_populates="operation", lazy="selectin", order_by="OperationCorrelation.id"
    )


class OperationCorrelation(Base):
    __tablename__ = "operation_correlations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation_id: Mapped[str] = mapped_column(String, ForeignKey("operations.id"), index=True)
    id_kind: Mapped[str] = mapped_column(String)
    # Network identifiers are globally unique, so lookups ignore which kind was echoed.
    value: Mapped[str] = mapped_column(String, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    operation: Mapped[Operation] = relationship(back_populates="correlations")


class Notification(Base):
    __tablename__ = "notifications"
    # Fetch server-side timestamps on flush so async sessions never lazy-load them.
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        Index("ix_notifications_status_last_attempt", "status", "last_attempt_at"),
        Index("ix_notifications_client_created", "client_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True)
    client_id: Mapped[str] = mapped_column(String, ForeignKey("clients.id"), index=True)
    operation_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("operations.id"), nullable=True, index=True
    )
    kind: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="pending")
    # Snapshot of the operation outcome; never rewritten after creation.
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType)
    destination: Mapped[str] = mapped_column(String)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Advisory per-notification claim so only one attempt is in flight.
    claim_token: Mapped[str | None] = mapped_column(String, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
