"""SQLAlchemy table definitions."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    DDL,
    BigInteger,
    DateTime,
    Index,
    String,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.dialects.postgresql import CIDR, UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from peerlab_gateway.db.base import Base

ASN_UNIQUE_CONSTRAINT = "uq_user_asn_mappings_asn"
HANDLE_UNIQUE_CONSTRAINT = "uq_user_asn_mappings_user_hash"
PREFIX_EXCLUSION_CONSTRAINT = "ex_prefix_leases_active_prefix"


class AsnAssignmentTable(Base):
    """User ASN mappings - one permanent row per handle."""

    __tablename__ = "user_asn_mappings"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    user_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # Identity provider subject, kept for email enrichment
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    asn: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        # Upsert key: at most one assignment per handle
        UniqueConstraint("user_hash", name=HANDLE_UNIQUE_CONSTRAINT),
        # An ASN belongs to at most one handle
        UniqueConstraint("asn", name=ASN_UNIQUE_CONSTRAINT),
        Index("idx_user_asn_mappings_user_id", "user_id"),
        Index("idx_user_asn_mappings_created", "created_at"),
    )


class PrefixLeaseTable(Base):
    """Prefix leases - many historical rows per handle."""

    __tablename__ = "prefix_leases"

    lease_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)
    user_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prefix: Mapped[str] = mapped_column(CIDR, nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        # Active leases per user
        Index("idx_prefix_leases_user_hash", "user_hash", "end_time"),
        # Expiry queries and retention sweeps
        Index("idx_prefix_leases_end_time", "end_time"),
        # Occupancy lookups by prefix
        Index("idx_prefix_leases_active", "prefix", "end_time"),
    )


# Two leases may not hold the same prefix over overlapping [start, end) windows.
PREFIX_EXCLUSION_DDL = DDL(
    f"ALTER TABLE prefix_leases ADD CONSTRAINT {PREFIX_EXCLUSION_CONSTRAINT} "
    "EXCLUDE USING gist (prefix inet_ops WITH =, tstzrange(start_time, end_time) WITH &&)"
)

event.listen(PrefixLeaseTable.__table__, "after_create", PREFIX_EXCLUSION_DDL)
