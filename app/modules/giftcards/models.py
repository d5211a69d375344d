from app.database.database import Base
from sqlalchemy import Column, String, ForeignKey, Numeric, Enum, and_
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TimestampMixin, SoftDeleteMixin
import enum


class GiftCardMode(enum.Enum):
    DEMO = "demo"
    LIVE = "live"


class GiftCard(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "giftcards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)  # Issuer

    code = Column(String(50), nullable=False, unique=True)
    amount = Column(Numeric(15, 2), nullable=False)
    available_amount = Column(Numeric(15, 2), nullable=False)
    giftcard_mode = Column(Enum(GiftCardMode), nullable=False, default=GiftCardMode.LIVE)

    @classmethod
    def live_issued_by(cls, shop_id):
        """Cards that count for settlement: LIVE cards issued by ``shop_id``."""
        return and_(cls.shop_id == shop_id, cls.giftcard_mode == GiftCardMode.LIVE)
