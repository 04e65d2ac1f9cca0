from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from voucher_redemption.db.models.base import Base


class FraudCaseHistory(Base):
    __tablename__ = "fraud_case_history"
    __table_args__ = (Index("idx_fraud_case_history_case_created", "fraud_case_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    fraud_case_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("fraud_cases.id"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    performed_by: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
