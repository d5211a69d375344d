from app.database.database import Base
from sqlalchemy import Column, String, DateTime, ForeignKey, Numeric, Enum
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TimestampMixin, SoftDeleteMixin
import enum


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PurchaseMode(enum.Enum):
    LIVE = "live"
    DEMO = "demo"


class Purchase(Base, TimestampMixin, SoftDeleteMixin):
    """Customer invoice for gift cards bought at a shop"""
    __tablename__ = "purchases"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)

    invoice_number = Column(String(50), nullable=True, index=True)
    total_amount = Column(Numeric(15, 4), nullable=False)
    fees = Column(Numeric(15, 4), nullable=False, default=0)
    transaction_status = Column(Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING)
    invoice_mode = Column(Enum(PurchaseMode), nullable=False, default=PurchaseMode.LIVE)
    date = Column(DateTime(timezone=True), nullable=False, index=True)

    payment_invoice_id = Column(UUID(as_uuid=True), ForeignKey("payment_invoices.id"), nullable=True, index=True)


class Refund(Base, TimestampMixin, SoftDeleteMixin):
    """Refund of a purchase; reduces what the shop is billed for"""
    __tablename__ = "refunds"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)

    invoice_number = Column(String(50), nullable=True)
    refund_amount = Column(Numeric(15, 4), nullable=False)
    tax_amount = Column(Numeric(15, 4), nullable=False, default=0)
    date = Column(DateTime(timezone=True), nullable=False, index=True)

    payment_invoice_id = Column(UUID(as_uuid=True), ForeignKey("payment_invoices.id"), nullable=True, index=True)
