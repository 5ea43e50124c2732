from city_explorer.errors import GatewayError


def test_start_via_end(client, geo):
    resp = client.get("/route", params={"start": "48.85,2.29", "via": "48.86,2.30|48.87,2.31", "end": "48.88,2.32"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["distanceMeters"] == 3600.0
    assert len(geo.route_calls[0]["waypoints"]) == 4
    assert geo.route_calls[0]["mode"] == "driving"


def test_waypoints_and_mode(client, geo):
    resp = client.get("/route", params={"waypoints": "1,2|3,4", "mode": "Cycling"})
    assert resp.status_code == 200
    assert geo.route_calls[0]["mode"] == "cycling"
    assert [(p.lat, p.lng) for p in geo.route_calls[0]["waypoints"]] == [(1.0, 2.0), (3.0, 4.0)]


def test_invalid_coordinates(client):
    resp = client.get("/route", params={"start": "abc", "end": "1,2"})
    assert resp.status_code == 400
    assert resp.json() == {"error": 'start must contain numeric "lat,lng"'}


def test_missing_end(client):
    resp = client.get("/route", params={"start": "1,2"})
    assert resp.status_code == 400


def test_single_waypoint(client):
    resp = client.get("/route", params={"waypoints": "1,2"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "At least two waypoints are required"}


def test_unknown_mode(client):
    resp = client.get("/route", params={"waypoints": "1,2|3,4", "mode": "teleport"})
    assert resp.status_code == 400


def test_upstream_failure(client, geo):
    geo.route_error = GatewayError("Geoapify routing failed: 503 unavailable", status=503)
    resp = client.get("/route", params={"waypoints": "1,2|3,4"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Geoapify routing failed: 503 unavailable"}


def test_geocode_endpoint(client):
    resp = client.post("/geo/geocode", json={"query": "Eiffel Tower"})
    assert resp.status_code == 200
    assert resp.json() == {"lat": 48.8584, "lng": 2.2945, "formatted": "Eiffel Tower, Paris, France"}


def test_geocode_no_results(client):
    resp = client.post("/geo/geocode", json={"query": "Atlantis"})
    assert resp.status_code == 404


def test_health(client, store):
    assert client.get("/health").json() == {"status": "ok", "store": "up"}
    store.fail_reads = True
    assert client.get("/health").json() == {"status": "ok", "store": "down"}
