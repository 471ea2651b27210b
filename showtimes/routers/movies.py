from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from showtimes.catalog.catalog import CatalogStore, MovieFilter
from showtimes.model.model import MovieState
from showtimes.routers.deps import get_catalog, get_scheduler
from showtimes.scheduling.scheduling import Scheduler
from showtimes.schemas.schemas import (
    BulkScreeningsIn, MovieDeleted, MovieIn, MovieOut, MoviePage, MovieUpdate, ScreeningOut,
)

router = APIRouter()


@router.post("/movies", response_model=MovieOut, status_code=201)
async def create_movie(payload: MovieIn, catalog: CatalogStore = Depends(get_catalog)):
    return await catalog.create_movie(payload)


@router.get("/movies", response_model=MoviePage)
async def list_movies(
    search: Optional[str] = None,
    genre: Optional[str] = None,
    state: Optional[MovieState] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    catalog: CatalogStore = Depends(get_catalog),
):
    flt = MovieFilter(search=search, genre=genre, state=state, page=page, page_size=page_size)
    total, movies = await catalog.list_movies(flt)
    return MoviePage(
        total_items=total,
        total_pages=flt.total_pages(total),
        current_page=page,
        data=[MovieOut.model_validate(m) for m in movies],
    )


@router.get("/movies/{movie_id}", response_model=MovieOut)
async def get_movie(movie_id: int, catalog: CatalogStore = Depends(get_catalog)):
    # deleted movies stay retrievable by id
    return await catalog.require_movie(movie_id)


@router.put("/movies/{movie_id}", response_model=MovieOut)
async def update_movie(movie_id: int, payload: MovieUpdate, scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.update_movie(movie_id, payload)


@router.delete("/movies/{movie_id}", response_model=MovieDeleted)
async def delete_movie(movie_id: int, scheduler: Scheduler = Depends(get_scheduler)):
    count = await scheduler.delete_movie(movie_id)
    return MovieDeleted(
        message="Movie and its screenings marked as deleted.",
        movie_id=movie_id,
        screenings_deleted=count,
    )


@router.post("/movies/{movie_id}/screenings:bulkCreate", response_model=List[ScreeningOut], status_code=201)
async def bulk_create_screenings(
    movie_id: int, payload: BulkScreeningsIn, scheduler: Scheduler = Depends(get_scheduler),
):
    """
    Create every screening of the batch or none of them. On failure the
    error details carry the index of the first rejected screening.
    """
    return await scheduler.bulk_admit_screenings(movie_id, payload.screenings)
