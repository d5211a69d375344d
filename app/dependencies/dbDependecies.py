from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.database import get_async_db

# Request scoped session; services commit their own work
async_db_dependency = Annotated[AsyncSession, Depends(get_async_db)]
