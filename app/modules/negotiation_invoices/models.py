from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TimestampMixin, SoftDeleteMixin


class NegotiationInvoice(Base, TimestampMixin, SoftDeleteMixin):
    """Payout document for redemptions the platform reimburses to a shop.

    Written once by the settlement workflow; only ever soft deleted afterwards.
    """
    __tablename__ = "negotiation_invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)

    invoice_number = Column(String(50), nullable=False)
    redeemed_amount = Column(Numeric(15, 2), nullable=False)
    fee_amount = Column(Numeric(15, 2), nullable=False)
    payout_amount = Column(Numeric(15, 2), nullable=False)
    iban = Column(String(34), nullable=False, default="")  # Snapshot at issuance
    pdf_url = Column(String(1000), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    date_range_start = Column(DateTime(timezone=True), nullable=False)
    date_range_end = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_negotiation_invoice_number"),
    )
