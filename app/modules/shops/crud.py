"""
CRUD operations for shops and their notification settings
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.orm.attributes import set_committed_value
from typing import Optional
from uuid import UUID

from app.modules.shops.models import Shop, UserSettings


class ShopCRUD:
    """Shop lookups and the platform invoice counter"""

    async def get_admin_shop(self, db: AsyncSession, for_update: bool = False) -> Optional[Shop]:
        """
        Platform operator shop.

        ``for_update`` locks the row until the transaction ends and reloads it,
        so a counter cached in the session is never reused.
        """
        query = select(Shop).where(
            Shop.is_platform_admin.is_(True),
            Shop.not_deleted()
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_shop(self, db: AsyncSession, shop_id: UUID) -> Optional[Shop]:
        query = select(Shop).where(Shop.id == shop_id, Shop.not_deleted())
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_user_settings(self, db: AsyncSession, shop_id: UUID) -> Optional[UserSettings]:
        query = select(UserSettings).where(
            UserSettings.shop_id == shop_id,
            UserSettings.not_deleted()
        ).limit(1)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def advance_invoice_counter(self, db: AsyncSession, admin_shop: Shop, new_value: int) -> bool:
        """
        Compare-and-set the invoice counter against the value ``admin_shop`` was loaded with.

        Returns False when another transaction moved the counter after it was
        read, in which case nothing is written.
        """
        query = (
            update(Shop)
            .where(
                Shop.id == admin_shop.id,
                Shop.invoice_reference_number == admin_shop.invoice_reference_number
            )
            .values(invoice_reference_number=new_value)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(query)
        if result.rowcount != 1:
            return False
        set_committed_value(admin_shop, "invoice_reference_number", new_value)
        return True


shop_crud = ShopCRUD()
