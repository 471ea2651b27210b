from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showtimes.catalog.catalog import CatalogStore
from showtimes.database.database import get_db
from showtimes.scheduling.scheduling import Scheduler


def get_catalog(db: AsyncSession = Depends(get_db)) -> CatalogStore:
    return CatalogStore(db)


def get_scheduler(request: Request, db: AsyncSession = Depends(get_db)) -> Scheduler:
    # room locks live on the app so every request of this process shares them
    return Scheduler(db, request.app.state.room_locks)
