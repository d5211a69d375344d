from app.database.database import Base
from sqlalchemy import Column, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TimestampMixin, SoftDeleteMixin


class Redemption(Base, TimestampMixin, SoftDeleteMixin):
    """Value consumed from a gift card at a shop"""
    __tablename__ = "redemptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    giftcard_id = Column(UUID(as_uuid=True), ForeignKey("giftcards.id"), nullable=False, index=True)
    redeemed_shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)
    issuer_shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False)

    # Raw values; truncation happens when they are aggregated
    amount = Column(Numeric(15, 4), nullable=False)
    fees = Column(Numeric(15, 4), nullable=False, default=0)
    redeemed_date = Column(DateTime(timezone=True), nullable=False, index=True)
    comment = Column(Text, nullable=True)

    # Set once the redemption has been settled; never cleared afterwards
    negotiation_invoice_id = Column(
        UUID(as_uuid=True), ForeignKey("negotiation_invoices.id"), nullable=True, index=True
    )

    @property
    def is_invoiced(self) -> bool:
        return self.negotiation_invoice_id is not None
