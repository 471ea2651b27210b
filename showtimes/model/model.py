import enum
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import relationship
from showtimes.database.database import Base


def utcnow() -> datetime:
    # timestamps are stored as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MovieState(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DELETED = "deleted"


class ScreeningState(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


def _state_column(enum_cls, default):
    return sa.Column(
        sa.Enum(
            enum_cls,
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=default,
        index=True,
    )


class Movie(Base):
    __tablename__ = "movies"
    id = sa.Column(sa.Integer, primary_key=True)
    title = sa.Column(sa.String, nullable=False, unique=True)
    synopsis = sa.Column(sa.Text, nullable=True)
    duration_minutes = sa.Column(sa.Integer, nullable=True)
    classification = sa.Column(sa.String, nullable=True)   # PG, PG-13, ...
    genres = sa.Column(sa.JSON, nullable=False, default=list)
    release_date = sa.Column(sa.Date, nullable=True)
    lifecycle_state = _state_column(MovieState, MovieState.ACTIVE)
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    screenings = relationship("Screening", back_populates="movie")

    __table_args__ = (
        sa.CheckConstraint("duration_minutes IS NULL OR duration_minutes >= 0", name="ck_movie_duration"),
    )


class Screening(Base):
    __tablename__ = "screenings"
    id = sa.Column(sa.Integer, primary_key=True)
    movie_id = sa.Column(sa.Integer, sa.ForeignKey("movies.id"), nullable=False, index=True)
    room = sa.Column(sa.String, nullable=False)
    start_time = sa.Column(sa.DateTime(timezone=False), nullable=False)
    end_time = sa.Column(sa.DateTime(timezone=False), nullable=False)
    price = sa.Column(sa.Numeric(10, 2), nullable=True)
    language = sa.Column(sa.String, nullable=True)
    format = sa.Column(sa.String, nullable=True)   # 2D / 3D / IMAX
    capacity = sa.Column(sa.Integer, nullable=True)
    lifecycle_state = _state_column(ScreeningState, ScreeningState.ACTIVE)
    created_at = sa.Column(sa.DateTime, nullable=False, default=utcnow)
    updated_at = sa.Column(sa.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    movie = relationship("Movie", back_populates="screenings")

    __table_args__ = (
        sa.CheckConstraint("start_time < end_time", name="ck_screening_interval"),
        sa.Index("ix_screening_room_state_start", "room", "lifecycle_state", "start_time"),
    )
