from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
from uuid import UUID

from app.modules.giftcards.models import GiftCard


class GiftCardCRUD:

    async def get(self, db: AsyncSession, giftcard_id: UUID, for_update: bool = False) -> Optional[GiftCard]:
        query = select(GiftCard).where(GiftCard.id == giftcard_id, GiftCard.not_deleted())
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_code(self, db: AsyncSession, code: str, for_update: bool = False) -> Optional[GiftCard]:
        """Codes are stored without separators; 'ABCD-1234' finds 'ABCD1234'."""
        query = select(GiftCard).where(
            GiftCard.code == code.replace("-", "").strip(),
            GiftCard.not_deleted()
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()


giftcard_crud = GiftCardCRUD()
