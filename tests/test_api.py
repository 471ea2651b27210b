import pytest

pytestmark = pytest.mark.anyio


async def new_movie(client, title="Dune", duration_minutes=120, **fields):
    r = await client.post("/movies", json={"title": title, "duration_minutes": duration_minutes, **fields})
    assert r.status_code == 201, r.text
    return r.json()


async def new_screening(client, movie_id, room="R1", start="2026-03-14T10:00:00", end="2026-03-14T12:00:00", **fields):
    return await client.post("/screenings", json={
        "movie_id": movie_id, "room": room, "start_time": start, "end_time": end, **fields,
    })


async def test_root(client):
    r = await client.get("/")
    assert r.status_code == 200


async def test_movie_crud(client):
    movie = await new_movie(client, genres=["Sci-Fi"], classification="PG-13")
    assert movie["lifecycle_state"] == "active"

    r = await client.get(f"/movies/{movie['id']}")
    assert r.json()["title"] == "Dune"

    r = await client.put(f"/movies/{movie['id']}", json={"synopsis": "Spice.", "lifecycle_state": "inactive"})
    assert r.status_code == 200
    assert r.json()["synopsis"] == "Spice."
    assert r.json()["lifecycle_state"] == "inactive"

    r = await client.get("/movies", params={"state": "inactive"})
    body = r.json()
    assert body["total_items"] == 1
    assert body["total_pages"] == 1
    assert body["current_page"] == 1
    assert body["data"][0]["id"] == movie["id"]


async def test_movie_errors(client):
    await new_movie(client)
    r = await client.post("/movies", json={"title": "Dune"})
    assert r.status_code == 409
    assert r.json()["code"] == "duplicate_title"

    r = await client.post("/movies", json={"title": "", "duration_minutes": -5})
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_input"

    r = await client.get("/movies/999")
    assert r.status_code == 404
    assert set(r.json()) == {"code", "message", "details"}

    r = await client.put("/movies/1", json={"lifecycle_state": "deleted"})
    assert r.status_code == 400


async def test_screening_overlap_scenario(client):
    movie = await new_movie(client, duration_minutes=None)
    r = await new_screening(client, movie["id"], price="9.50", language="es", format="2D", capacity=120)
    assert r.status_code == 201
    first = r.json()
    assert first["lifecycle_state"] == "active"

    r = await new_screening(client, movie["id"], start="2026-03-14T11:00:00", end="2026-03-14T13:00:00")
    assert r.status_code == 409
    assert r.json()["code"] == "room_overlap"
    assert r.json()["details"]["conflict"] == {"screening_id": first["id"]}

    r = await new_screening(client, movie["id"], start="2026-03-14T12:00:00", end="2026-03-14T14:00:00")
    assert r.status_code == 201

    r = await new_screening(client, movie["id"], start="2026-03-14T09:00:00", end="2026-03-14T11:30:00")
    assert r.status_code == 409


async def test_timezone_aware_times_are_compared_in_utc(client):
    movie = await new_movie(client, duration_minutes=None)
    r = await new_screening(client, movie["id"])
    assert r.status_code == 201
    # 12:30+02:00 is 10:30 UTC
    r = await new_screening(client, movie["id"], start="2026-03-14T12:30:00+02:00", end="2026-03-14T13:30:00+02:00")
    assert r.status_code == 409


async def test_screening_validation_errors(client):
    movie = await new_movie(client, duration_minutes=120)

    r = await new_screening(client, movie["id"], end="2026-03-14T09:00:00")
    assert (r.status_code, r.json()["code"]) == (422, "invalid_interval")

    r = await new_screening(client, movie["id"], end="2026-03-14T11:30:00")
    assert (r.status_code, r.json()["code"]) == (422, "duration_too_short")

    r = await new_screening(client, 999)
    assert (r.status_code, r.json()["code"]) == (400, "movie_unavailable")

    await client.put(f"/movies/{movie['id']}", json={"lifecycle_state": "inactive"})
    r = await new_screening(client, movie["id"])
    assert (r.status_code, r.json()["code"]) == (400, "movie_unavailable")

    r = await client.post("/screenings", json={"movie_id": movie["id"], "room": "R1"})
    assert (r.status_code, r.json()["code"]) == (400, "invalid_input")


async def test_bulk_create(client):
    movie = await new_movie(client, duration_minutes=90)
    url = f"/movies/{movie['id']}/screenings:bulkCreate"

    r = await client.post(url, json={"screenings": [
        {"room": "R1", "start_time": "2026-03-14T10:00:00", "end_time": "2026-03-14T12:00:00"},
        {"room": "R1", "start_time": "2026-03-14T11:00:00", "end_time": "2026-03-14T13:00:00"},
    ]})
    assert r.status_code == 409
    assert r.json()["details"]["index"] == 1
    assert (await client.get("/screenings", params={"movie_id": movie["id"]})).json() == []

    r = await client.post(url, json={"screenings": [
        {"room": "R1", "start_time": "2026-03-14T10:00:00", "end_time": "2026-03-14T12:00:00"},
        {"room": "R2", "start_time": "2026-03-14T10:00:00", "end_time": "2026-03-14T12:00:00", "language": "en"},
    ]})
    assert r.status_code == 201
    assert [s["room"] for s in r.json()] == ["R1", "R2"]
    assert all(s["movie_id"] == movie["id"] for s in r.json())

    r = await client.post(url, json={"screenings": []})
    assert (r.status_code, r.json()) == (201, [])

    r = await client.post("/movies/999/screenings:bulkCreate", json={"screenings": []})
    assert r.status_code == 404

    r = await client.post(url, json={"turnos": []})
    assert r.status_code == 400


async def test_delete_movie_cascades_over_http(client):
    movie = await new_movie(client, duration_minutes=None)
    a = (await new_screening(client, movie["id"])).json()
    b = (await new_screening(client, movie["id"], room="R2")).json()
    c = (await new_screening(client, movie["id"], start="2026-03-14T14:00:00", end="2026-03-14T16:00:00")).json()
    assert (await client.delete(f"/screenings/{c['id']}")).status_code == 200

    r = await client.delete(f"/movies/{movie['id']}")
    assert r.status_code == 200
    assert r.json()["screenings_deleted"] == 2

    for s in (a, b, c):
        assert (await client.get(f"/screenings/{s['id']}")).json()["lifecycle_state"] == "deleted"
    assert (await client.get(f"/movies/{movie['id']}")).json()["lifecycle_state"] == "deleted"
    assert (await client.get("/movies")).json()["total_items"] == 0

    r = await client.delete(f"/movies/{movie['id']}")
    assert (r.status_code, r.json()["screenings_deleted"]) == (200, 0)
    assert (await client.delete("/movies/999")).status_code == 404


async def test_screening_listing_and_delete(client):
    movie = await new_movie(client, duration_minutes=None)
    a = (await new_screening(client, movie["id"])).json()
    await new_screening(client, movie["id"], room="R2", start="2026-03-14T18:00:00", end="2026-03-14T20:00:00")

    r = await client.get("/screenings", params={"room": "R2"})
    assert [s["room"] for s in r.json()] == ["R2"]

    r = await client.get("/screenings", params={"from": "2026-03-14T09:00:00", "to": "2026-03-14T13:00:00"})
    assert [s["id"] for s in r.json()] == [a["id"]]

    assert (await client.delete(f"/screenings/{a['id']}")).status_code == 200
    r = await client.delete(f"/screenings/{a['id']}")
    assert r.status_code == 200
    assert r.json()["message"] == "Screening was already deleted."

    assert len((await client.get("/screenings")).json()) == 1
    assert len((await client.get("/screenings", params={"include_deleted": "true"})).json()) == 2
    assert (await client.delete("/screenings/999")).status_code == 404
    assert (await client.get("/screenings/999")).status_code == 404


async def test_update_screening_over_http(client):
    movie = await new_movie(client, duration_minutes=None)
    a = (await new_screening(client, movie["id"])).json()
    await new_screening(client, movie["id"], start="2026-03-14T14:00:00", end="2026-03-14T16:00:00")

    r = await client.put(f"/screenings/{a['id']}", json={"end_time": "2026-03-14T15:00:00"})
    assert (r.status_code, r.json()["code"]) == (409, "room_overlap")

    r = await client.put(f"/screenings/{a['id']}", json={"capacity": 60, "end_time": "2026-03-14T13:00:00"})
    assert r.status_code == 200
    assert r.json()["capacity"] == 60
    assert r.json()["end_time"] == "2026-03-14T13:00:00"


async def test_movie_duration_update_respects_screenings(client):
    movie = await new_movie(client, duration_minutes=90)
    s = (await new_screening(client, movie["id"], end="2026-03-14T11:30:00")).json()

    r = await client.put(f"/movies/{movie['id']}", json={"duration_minutes": 180})
    assert (r.status_code, r.json()["code"]) == (422, "duration_too_short")
    assert r.json()["details"]["screening_ids"] == [s["id"]]
    assert (await client.get(f"/movies/{movie['id']}")).json()["duration_minutes"] == 90

    r = await client.put(f"/movies/{movie['id']}", json={"duration_minutes": 90, "lifecycle_state": "inactive"})
    assert r.status_code == 200
    assert r.json()["lifecycle_state"] == "inactive"


async def test_movie_title_cannot_be_nulled(client):
    movie = await new_movie(client)
    r = await client.put(f"/movies/{movie['id']}", json={"title": None})
    assert (r.status_code, r.json()["code"]) == (400, "invalid_input")
    assert (await client.get(f"/movies/{movie['id']}")).json()["title"] == "Dune"
