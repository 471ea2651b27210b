import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from showtimes.database.database import Base, engine
from showtimes.errors.errors import ShowtimesError
from showtimes.routers import movies, screenings
from showtimes.scheduling.scheduling import RoomLocks

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database schema ready")
    yield
    await engine.dispose()


app = FastAPI(title="Showtimes API", lifespan=lifespan)
app.state.room_locks = RoomLocks()

app.include_router(movies.router, tags=["movies"])
app.include_router(screenings.router, tags=["screenings"])


@app.exception_handler(ShowtimesError)
async def showtimes_error_handler(request: Request, exc: ShowtimesError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    payload = {"code": "invalid_input", "message": "Invalid request.", "details": exc.errors()}
    return JSONResponse(status_code=400, content=jsonable_encoder(payload))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    payload = {"code": "internal_error", "message": "Internal error.", "details": str(exc)}
    return JSONResponse(status_code=500, content=payload)


@app.get("/")
def root():
    return {"message": "Showtimes API is running"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
