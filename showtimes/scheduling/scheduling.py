import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from showtimes.catalog.catalog import CatalogStore, apply_movie_state
from showtimes.database.database import transaction
from showtimes.errors.errors import (
    ConcurrentModification, DurationTooShort, InvalidInterval, InvalidStateTransition, MovieUnavailable,
    NotFound, RoomOverlap, ShowtimesError,
)
from showtimes.model.model import Movie, MovieState, Screening, ScreeningState, utcnow
from showtimes.schemas.schemas import MovieUpdate, ScreeningCreate, ScreeningFields, ScreeningUpdate

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = ("room", "start_time", "end_time")
UPDATE_ATTEMPTS = 3


@dataclass
class Slot:
    """An occupied (or proposed) [start_time, end_time) interval in a room."""
    start_time: datetime
    end_time: datetime
    screening_id: Optional[int] = None
    batch_index: Optional[int] = None

    def ref(self) -> dict:
        if self.screening_id is not None:
            return {"screening_id": self.screening_id}
        return {"batch_index": self.batch_index}


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # half-open intervals: touching at a boundary is not an overlap
    return a_start < b_end and b_start < a_end


def validate_screening(candidate, movie: Optional[Movie], active_in_room: Iterable[Slot]) -> None:
    """
    The admission rules, checked in order; the first failure is raised.

    1. the interval is non-empty
    2. the movie exists and is active
    3. the interval fits the movie's duration, when the movie has one
    4. the interval does not overlap any active screening in the room

    `candidate` is anything with start_time/end_time. Nothing is written.
    """
    start, end = candidate.start_time, candidate.end_time
    if not start < end:
        raise InvalidInterval(details={"start_time": start.isoformat(), "end_time": end.isoformat()})

    if movie is None or movie.lifecycle_state in (MovieState.INACTIVE, MovieState.DELETED):
        raise MovieUnavailable(details={
            "movie_id": getattr(movie, "id", getattr(candidate, "movie_id", None)),
            "lifecycle_state": movie.lifecycle_state.value if movie is not None else None,
        })

    slot_minutes = (end - start).total_seconds() / 60
    if movie.duration_minutes is not None and slot_minutes < movie.duration_minutes:
        raise DurationTooShort(details={
            "duration_minutes": movie.duration_minutes,
            "slot_minutes": slot_minutes,
        })

    for s in active_in_room:
        if overlaps(start, end, s.start_time, s.end_time):
            raise RoomOverlap(details={
                "conflict": s.ref(),
                "conflict_start_time": s.start_time.isoformat(),
                "conflict_end_time": s.end_time.isoformat(),
            })


class RoomLocks:
    """
    In-process mutual exclusion per room, held across read-check-then-write.
    Several rooms are always taken in sorted order. A room's lock is dropped
    once nobody holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self):
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, rooms: Iterable[str]):
        rooms = sorted(set(rooms))
        # registered before the first await so a waiter keeps its lock alive
        for room in rooms:
            self._users[room] = self._users.get(room, 0) + 1
            if room not in self._locks:
                self._locks[room] = asyncio.Lock()
        try:
            async with AsyncExitStack() as stack:
                for room in rooms:
                    await stack.enter_async_context(self._locks[room])
                yield
        finally:
            for room in rooms:
                self._users[room] -= 1
                if not self._users[room]:
                    del self._users[room]
                    del self._locks[room]


class _RoomChanged(Exception):
    """The screening left the locked rooms between the unlocked read and the row lock."""

    def __init__(self, rooms):
        super().__init__(sorted(rooms))
        self.rooms = rooms


class Scheduler:
    """Admits screenings into room timetables and drives soft-delete lifecycles."""

    def __init__(self, db: AsyncSession, room_locks: RoomLocks):
        self.db = db
        self.room_locks = room_locks
        self.catalog = CatalogStore(db)

    # ---------- concurrency scopes ----------
    @asynccontextmanager
    async def _room_scope(self, rooms: Iterable[str]):
        rooms = sorted(set(rooms))
        async with self.room_locks.hold(rooms):
            async with transaction(self.db):
                if self.db.bind.dialect.name == "postgresql":
                    # serializes across worker processes, released at commit/rollback
                    for room in rooms:
                        await self.db.execute(select(func.pg_advisory_xact_lock(func.hashtext(room))))
                yield

    async def _occupancy(self, room: str, exclude_id: Optional[int] = None) -> List[Slot]:
        q = select(Screening).where(and_(
            Screening.room == room,
            Screening.lifecycle_state == ScreeningState.ACTIVE,
        ))
        if exclude_id is not None:
            q = q.where(Screening.id != exclude_id)
        q = q.order_by(Screening.start_time).with_for_update()
        res = await self.db.execute(q)
        return [Slot(s.start_time, s.end_time, screening_id=s.id) for s in res.scalars().all()]

    async def _lock_screening(self, screening_id: int) -> Screening:
        q = (
            select(Screening).where(Screening.id == screening_id)
            .with_for_update().execution_options(populate_existing=True)
        )
        res = await self.db.execute(q)
        s = res.scalar_one_or_none()
        if s is None:
            raise NotFound("Screening not found.", {"screening_id": screening_id})
        return s

    # ---------- admission ----------
    async def admit_screening(self, payload: ScreeningCreate) -> Screening:
        async with self._room_scope([payload.room]):
            movie = await self.catalog.lock_movie(payload.movie_id, shared=True)
            occupied = await self._occupancy(payload.room)
            try:
                validate_screening(payload, movie, occupied)
            except ShowtimesError as exc:
                logger.info("screening rejected for movie %s in room %r: %s",
                            payload.movie_id, payload.room, exc.code)
                raise
            s = Screening(**payload.model_dump(), lifecycle_state=ScreeningState.ACTIVE)
            self.db.add(s)
            await self.db.flush()
        logger.info("screening %s admitted: movie %s room %r [%s, %s)",
                    s.id, s.movie_id, s.room, s.start_time, s.end_time)
        return s

    async def bulk_admit_screenings(self, movie_id: int, candidates: List[ScreeningFields]) -> List[Screening]:
        """
        All-or-nothing admission of a batch for one movie. Each candidate is
        checked against the persisted timetable of its room and against the
        candidates accepted before it in the same batch. The first failure is
        raised with its batch position in details["index"].
        """
        if not candidates:
            await self.catalog.require_movie(movie_id)
            return []

        rooms = {c.room for c in candidates}
        async with self._room_scope(rooms):
            movie = await self.catalog.lock_movie(movie_id, shared=True)
            if movie is None:
                raise NotFound("Movie not found.", {"movie_id": movie_id})
            timetable = {room: await self._occupancy(room) for room in rooms}

            accepted = []
            for index, c in enumerate(candidates):
                try:
                    validate_screening(c, movie, timetable[c.room])
                except ShowtimesError as exc:
                    exc.details = {**exc.details, "index": index}
                    logger.info("bulk batch for movie %s rejected at index %d: %s", movie_id, index, exc.code)
                    raise
                timetable[c.room].append(Slot(c.start_time, c.end_time, batch_index=index))
                accepted.append(Screening(
                    movie_id=movie_id, **c.model_dump(), lifecycle_state=ScreeningState.ACTIVE,
                ))
            self.db.add_all(accepted)
            await self.db.flush()
        logger.info("bulk admitted %d screenings for movie %s", len(accepted), movie_id)
        return accepted

    async def update_screening(self, screening_id: int, payload: ScreeningUpdate) -> Screening:
        """
        Update a screening. Moving it (room or times) re-runs the admission
        rules against its room, ignoring the screening itself.
        """
        fields = payload.model_dump(exclude_unset=True)
        for key in SCHEDULE_FIELDS:
            if key in fields and fields[key] is None:
                del fields[key]

        current = await self.db.get(Screening, screening_id)
        if current is None:
            raise NotFound("Screening not found.", {"screening_id": screening_id})
        rooms = {current.room, fields.get("room", current.room)}

        for _ in range(UPDATE_ATTEMPTS):
            try:
                s = await self._update_screening_in(rooms, screening_id, fields)
            except _RoomChanged as changed:
                logger.info("screening %s changed room while waiting, retrying with %s",
                            screening_id, sorted(changed.rooms))
                rooms = changed.rooms
                continue
            logger.info("screening %s updated: %s", screening_id, sorted(fields))
            return s
        raise ConcurrentModification(details={"screening_id": screening_id})

    async def _update_screening_in(self, rooms, screening_id: int, fields: dict) -> Screening:
        async with self._room_scope(rooms):
            s = await self._lock_screening(screening_id)
            needed = {s.room, fields.get("room", s.room)}
            if not needed <= set(rooms):
                raise _RoomChanged(needed)
            if s.lifecycle_state == ScreeningState.DELETED:
                raise InvalidStateTransition(
                    "Deleted screenings cannot be modified.", {"screening_id": screening_id},
                )
            moved = any(k in fields and fields[k] != getattr(s, k) for k in SCHEDULE_FIELDS)
            if moved:
                proposed = Slot(
                    fields.get("start_time", s.start_time),
                    fields.get("end_time", s.end_time),
                    screening_id=s.id,
                )
                movie = await self.catalog.lock_movie(s.movie_id, shared=True)
                occupied = await self._occupancy(fields.get("room", s.room), exclude_id=s.id)
                try:
                    validate_screening(proposed, movie, occupied)
                except ShowtimesError as exc:
                    logger.info("screening %s move rejected: %s", screening_id, exc.code)
                    raise
            for key, value in fields.items():
                setattr(s, key, value)
            await self.db.flush()
        return s

    # ---------- lifecycle ----------
    async def delete_screening(self, screening_id: int) -> Tuple[Screening, bool]:
        """Soft-delete one screening. Deleting twice is a no-op."""
        async with transaction(self.db):
            s = await self._lock_screening(screening_id)
            changed = s.lifecycle_state != ScreeningState.DELETED
            if changed:
                s.lifecycle_state = ScreeningState.DELETED
                await self.db.flush()
        if changed:
            logger.info("screening %s deleted", screening_id)
        return s, changed

    async def delete_movie(self, movie_id: int) -> int:
        """
        Soft-delete a movie and every active screening of it in one
        transaction. Returns how many screenings were deleted; an already
        deleted movie yields 0.
        """
        async with transaction(self.db):
            movie = await self.catalog.lock_movie(movie_id)
            if movie is None:
                raise NotFound("Movie not found.", {"movie_id": movie_id})
            if movie.lifecycle_state == MovieState.DELETED:
                return 0
            movie.lifecycle_state = MovieState.DELETED

            res = await self.db.execute(
                select(Screening.id).where(and_(
                    Screening.movie_id == movie_id,
                    Screening.lifecycle_state == ScreeningState.ACTIVE,
                )).with_for_update()
            )
            ids = res.scalars().all()
            if ids:
                await self.db.execute(
                    update(Screening)
                    .where(Screening.id.in_(ids))
                    .values(lifecycle_state=ScreeningState.DELETED, updated_at=utcnow())
                )
            await self.db.flush()
        logger.info("movie %s deleted, cascaded to %d screenings", movie_id, len(ids))
        return len(ids)

    async def set_movie_state(self, movie_id: int, new_state: MovieState) -> Movie:
        async with transaction(self.db):
            movie = await self.catalog.lock_movie(movie_id)
            if movie is None:
                raise NotFound("Movie not found.", {"movie_id": movie_id})
            self._transition(movie, new_state)
            await self.db.flush()
        return movie

    async def update_movie(self, movie_id: int, payload: MovieUpdate) -> Movie:
        """
        Update a movie in one transaction: descriptive fields go through the
        catalog, a lifecycle_state goes through the active/inactive toggle.
        """
        fields = payload.model_dump(exclude_unset=True)
        new_state = fields.pop("lifecycle_state", None)
        async with transaction(self.db):
            movie = await self.catalog.update_movie(movie_id, fields)
            if new_state is not None:
                self._transition(movie, MovieState(new_state))
            await self.db.flush()
        logger.info("movie %s updated: %s", movie_id, sorted(fields))
        return movie

    def _transition(self, movie: Movie, new_state: MovieState) -> None:
        if apply_movie_state(movie, new_state):
            logger.info("movie %s is now %s", movie.id, new_state.value)

    # ---------- reads ----------
    async def get_screening(self, screening_id: int) -> Screening:
        s = await self.db.get(Screening, screening_id)
        if s is None:
            raise NotFound("Screening not found.", {"screening_id": screening_id})
        return s

    async def list_screenings(self, movie_id: Optional[int] = None, room: Optional[str] = None,
                              start_from: Optional[datetime] = None, end_to: Optional[datetime] = None,
                              include_deleted: bool = False) -> List[Screening]:
        q = select(Screening)
        if movie_id is not None:
            q = q.where(Screening.movie_id == movie_id)
        if room:
            q = q.where(Screening.room == room)
        if start_from is not None:
            q = q.where(Screening.start_time >= start_from)
        if end_to is not None:
            q = q.where(Screening.end_time <= end_to)
        if not include_deleted:
            q = q.where(Screening.lifecycle_state == ScreeningState.ACTIVE)
        res = await self.db.execute(q.order_by(Screening.start_time, Screening.id))
        return res.scalars().all()
