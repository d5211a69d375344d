from app.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Numeric, Enum, Index
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TimestampMixin, SoftDeleteMixin
import enum


class StudioMode(enum.Enum):
    LIVE = "live"
    DEMO = "demo"


class Shop(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "shops"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity
    owner = Column(String(255), nullable=True)  # Owner email, receives invoice mails
    studio_id = Column(Integer, nullable=True, unique=True)
    studio_name = Column(String(200), nullable=True)
    official_name = Column(String(200), nullable=True)
    street = Column(String(200), nullable=True)
    city = Column(String(100), nullable=True)
    country_name = Column(String(100), nullable=True)
    phone = Column(String(50), nullable=True)
    logo_url = Column(String(500), nullable=True)
    studio_mode = Column(Enum(StudioMode), nullable=False, default=StudioMode.DEMO)

    # Fee schedule for purchases
    platform_fee = Column(Numeric(7, 3), nullable=True)  # percentage
    fixed_payment_fee = Column(Numeric(15, 2), nullable=True)
    # Fee schedule for redemptions of platform issued cards
    platform_redeem_fee = Column(Numeric(7, 3), nullable=True)  # percentage
    fixed_payment_redeem_fee = Column(Numeric(15, 2), nullable=True)

    # Banking
    iban = Column(String(34), nullable=True)

    # Platform operator. Its counter numbers every settlement invoice.
    is_platform_admin = Column(Boolean, nullable=False, default=False)
    invoice_reference_number = Column(Integer, nullable=True)

    __table_args__ = (
        Index(
            "uq_shops_single_platform_admin",
            "is_platform_admin",
            unique=True,
            postgresql_where=(is_platform_admin.is_(True)),
            sqlite_where=(is_platform_admin.is_(True)),
        ),
    )


class UserSettings(Base, TimestampMixin, SoftDeleteMixin):
    """Per-shop notification preferences"""
    __tablename__ = "user_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    shop_id = Column(UUID(as_uuid=True), ForeignKey("shops.id"), nullable=False, index=True)

    negotiation_invoice_notifications = Column(Boolean, nullable=False, default=True)
    payment_invoice_notifications = Column(Boolean, nullable=False, default=True)
