import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from showtimes.database.database import transaction
from showtimes.errors.errors import DuplicateTitle, DurationTooShort, InvalidStateTransition, NotFound
from showtimes.model.model import Movie, MovieState, Screening, ScreeningState
from showtimes.schemas.schemas import MovieIn

logger = logging.getLogger(__name__)


@dataclass
class MovieFilter:
    search: Optional[str] = None
    genre: Optional[str] = None
    state: Optional[MovieState] = None
    page: int = 1
    page_size: int = 10

    def total_pages(self, total: int) -> int:
        return math.ceil(total / self.page_size) if total else 0


class CatalogStore:
    """Movie records. Lifecycle transitions are written by the scheduling engine."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_movie(self, movie_id: int) -> Optional[Movie]:
        return await self.db.get(Movie, movie_id)

    async def lock_movie(self, movie_id: int, shared: bool = False) -> Optional[Movie]:
        """Re-read a movie row under a row lock (shared for admissions, exclusive for transitions)."""
        q = (
            select(Movie).where(Movie.id == movie_id)
            .with_for_update(read=shared).execution_options(populate_existing=True)
        )
        res = await self.db.execute(q)
        return res.scalar_one_or_none()

    async def require_movie(self, movie_id: int) -> Movie:
        movie = await self.get_movie(movie_id)
        if movie is None:
            raise NotFound("Movie not found.", {"movie_id": movie_id})
        return movie

    async def list_movies(self, flt: MovieFilter) -> Tuple[int, List[Movie]]:
        conditions = []
        if flt.search:
            pattern = f"%{flt.search.lower()}%"
            conditions.append(or_(
                func.lower(Movie.title).like(pattern),
                func.lower(func.coalesce(Movie.synopsis, "")).like(pattern),
            ))
        if flt.state is not None:
            conditions.append(Movie.lifecycle_state == flt.state)
        else:
            conditions.append(Movie.lifecycle_state != MovieState.DELETED)

        q = select(Movie).where(*conditions).order_by(Movie.id)
        offset = (flt.page - 1) * flt.page_size
        if not flt.genre:
            total = await self.db.scalar(select(func.count()).select_from(Movie).where(*conditions))
            res = await self.db.execute(q.offset(offset).limit(flt.page_size))
            return total, res.scalars().all()

        # genres is a JSON list, matched here so the query stays portable
        res = await self.db.execute(q)
        wanted = flt.genre.lower()
        movies = [m for m in res.scalars().all() if wanted in (g.lower() for g in (m.genres or []))]
        return len(movies), movies[offset:offset + flt.page_size]

    async def _title_taken(self, title: str, exclude_id: Optional[int] = None) -> bool:
        q = select(Movie.id).where(Movie.title == title)
        if exclude_id is not None:
            q = q.where(Movie.id != exclude_id)
        res = await self.db.execute(q)
        return res.first() is not None

    async def _flush_unique(self, title: str):
        try:
            await self.db.flush()
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            raise DuplicateTitle(details={"title": title}) from exc

    async def create_movie(self, payload: MovieIn) -> Movie:
        async with transaction(self.db):
            if await self._title_taken(payload.title):
                raise DuplicateTitle(details={"title": payload.title})
            m = Movie(**payload.model_dump(), lifecycle_state=MovieState.ACTIVE)
            self.db.add(m)
            await self._flush_unique(payload.title)
        logger.info("movie %s created: %r", m.id, m.title)
        return m

    async def short_screenings(self, movie_id: int, duration_minutes: int) -> List[int]:
        """Ids of active screenings of the movie whose slot is shorter than duration_minutes."""
        res = await self.db.execute(
            select(Screening).where(and_(
                Screening.movie_id == movie_id,
                Screening.lifecycle_state == ScreeningState.ACTIVE,
            )).order_by(Screening.id).with_for_update()
        )
        return [
            s.id for s in res.scalars().all()
            if (s.end_time - s.start_time).total_seconds() / 60 < duration_minutes
        ]

    async def update_movie(self, movie_id: int, fields: dict) -> Movie:
        """
        Write descriptive fields of a movie inside the caller's unit of work.

        Lifecycle transitions are not handled here. A duration_minutes is
        refused while any active screening of the movie is shorter than it.
        """
        m = await self.lock_movie(movie_id)
        if m is None:
            raise NotFound("Movie not found.", {"movie_id": movie_id})
        if m.lifecycle_state == MovieState.DELETED:
            raise InvalidStateTransition(
                "Deleted movies cannot be modified.",
                {"movie_id": movie_id, "lifecycle_state": m.lifecycle_state.value},
            )
        title = fields.get("title")
        if title is not None and await self._title_taken(title, exclude_id=movie_id):
            raise DuplicateTitle(details={"title": title})
        duration = fields.get("duration_minutes")
        if duration is not None:
            too_short = await self.short_screenings(movie_id, duration)
            if too_short:
                raise DurationTooShort(
                    "Active screenings of this movie are shorter than the new duration.",
                    {"duration_minutes": duration, "screening_ids": too_short},
                )
        for key, value in fields.items():
            if key == "genres" and value is None:
                value = []
            setattr(m, key, value)
        await self._flush_unique(m.title)
        return m


def is_unique_violation(exc: IntegrityError) -> bool:
    # asyncpg reports SQLSTATE 23505, sqlite only says so in the message
    if getattr(exc.orig, "sqlstate", None) == "23505":
        return True
    return "unique" in str(exc.orig).lower()


def apply_movie_state(movie: Movie, new_state: MovieState) -> bool:
    """
    Move a movie along active <-> inactive. Returns False when the movie is
    already in that state. Deleted is terminal.
    """
    if new_state not in (MovieState.ACTIVE, MovieState.INACTIVE):
        raise InvalidStateTransition(
            "Movies can only be toggled between active and inactive.",
            {"requested": new_state.value},
        )
    if movie.lifecycle_state == MovieState.DELETED:
        raise InvalidStateTransition(
            "Deleted movies have no outgoing transitions.",
            {"movie_id": movie.id, "requested": new_state.value},
        )
    if movie.lifecycle_state == new_state:
        return False
    movie.lifecycle_state = new_state
    return True
