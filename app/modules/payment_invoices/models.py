from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TimestampMixin, SoftDeleteMixin


class PaymentInvoice(Base, TimestampMixin, SoftDeleteMixin):
    """Fee invoice for the gift card purchases a shop handled"""
    __tablename__ = "payment_invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)

    invoice_number = Column(String(50), nullable=False)
    purchased_amount = Column(Numeric(15, 2), nullable=False)
    fee_amount = Column(Numeric(15, 2), nullable=False)
    pdf_url = Column(String(1000), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    date_range_start = Column(DateTime(timezone=True), nullable=False)
    date_range_end = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_payment_invoice_number"),
    )
