from pydantic import BaseModel, Field, conint, constr, field_validator
from typing import Any, List, Literal, Optional
from datetime import date, datetime, timezone
from decimal import Decimal

from showtimes.model.model import MovieState, ScreeningState


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ErrorOut(BaseModel):
    code: str
    message: str
    details: Any = None


# ---------- Movies ----------
class MovieIn(BaseModel):
    title: constr(strip_whitespace=True, min_length=1)
    synopsis: Optional[str] = None
    duration_minutes: Optional[conint(ge=0)] = None
    classification: Optional[str] = None
    genres: List[str] = []
    release_date: Optional[date] = None


class MovieUpdate(BaseModel):
    title: Optional[constr(strip_whitespace=True, min_length=1)] = None
    synopsis: Optional[str] = None
    duration_minutes: Optional[conint(ge=0)] = None
    classification: Optional[str] = None
    genres: Optional[List[str]] = None
    release_date: Optional[date] = None
    # deleted is reachable only through DELETE /movies/{id}
    lifecycle_state: Optional[Literal["active", "inactive"]] = None

    @field_validator("title")
    @classmethod
    def _title_not_null(cls, value: Optional[str]) -> str:
        # only runs for an explicit value; omitting title leaves it unchanged
        if value is None:
            raise ValueError("title cannot be null")
        return value


class MovieOut(BaseModel):
    id: int
    title: str
    synopsis: Optional[str] = None
    duration_minutes: Optional[int] = None
    classification: Optional[str] = None
    genres: List[str] = []
    release_date: Optional[date] = None
    lifecycle_state: MovieState
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MoviePage(BaseModel):
    total_items: int
    total_pages: int
    current_page: int
    data: List[MovieOut]


class MovieDeleted(BaseModel):
    message: str
    movie_id: int
    screenings_deleted: int


# ---------- Screenings ----------
class ScreeningFields(BaseModel):
    room: constr(strip_whitespace=True, min_length=1)
    start_time: datetime
    end_time: datetime
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    language: Optional[str] = None
    format: Optional[str] = None
    capacity: Optional[conint(ge=0)] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_naive_utc(value)


class ScreeningCreate(ScreeningFields):
    movie_id: int


class BulkScreeningsIn(BaseModel):
    screenings: List[ScreeningFields]


class ScreeningUpdate(BaseModel):
    room: Optional[constr(strip_whitespace=True, min_length=1)] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    language: Optional[str] = None
    format: Optional[str] = None
    capacity: Optional[conint(ge=0)] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)


class ScreeningOut(BaseModel):
    id: int
    movie_id: int
    room: str
    start_time: datetime
    end_time: datetime
    price: Optional[Decimal] = None
    language: Optional[str] = None
    format: Optional[str] = None
    capacity: Optional[int] = None
    lifecycle_state: ScreeningState
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ScreeningDeleted(BaseModel):
    message: str
    screening_id: int
