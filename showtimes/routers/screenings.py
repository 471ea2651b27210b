from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from datetime import datetime

from showtimes.routers.deps import get_scheduler
from showtimes.scheduling.scheduling import Scheduler
from showtimes.schemas.schemas import (
    ScreeningCreate, ScreeningDeleted, ScreeningOut, ScreeningUpdate, as_naive_utc,
)

router = APIRouter()


@router.post("/screenings", response_model=ScreeningOut, status_code=201)
async def create_screening(payload: ScreeningCreate, scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.admit_screening(payload)


@router.get("/screenings", response_model=List[ScreeningOut])
async def list_screenings(
    movie_id: Optional[int] = None,
    room: Optional[str] = None,
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    include_deleted: bool = False,
    scheduler: Scheduler = Depends(get_scheduler),
):
    return await scheduler.list_screenings(
        movie_id=movie_id,
        room=room,
        start_from=as_naive_utc(from_),
        end_to=as_naive_utc(to),
        include_deleted=include_deleted,
    )


@router.get("/screenings/{screening_id}", response_model=ScreeningOut)
async def get_screening(screening_id: int, scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.get_screening(screening_id)


@router.put("/screenings/{screening_id}", response_model=ScreeningOut)
async def update_screening(
    screening_id: int, payload: ScreeningUpdate, scheduler: Scheduler = Depends(get_scheduler),
):
    return await scheduler.update_screening(screening_id, payload)


@router.delete("/screenings/{screening_id}", response_model=ScreeningDeleted)
async def delete_screening(screening_id: int, scheduler: Scheduler = Depends(get_scheduler)):
    s, changed = await scheduler.delete_screening(screening_id)
    message = "Screening marked as deleted." if changed else "Screening was already deleted."
    return ScreeningDeleted(message=message, screening_id=s.id)
