def test_health_is_public(client):
    res = client.get("/health")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "OK"
    assert body["database"] == "ok"
    assert body["authentication"] == "enabled"


def test_unknown_route_lists_valid_routes(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    body = res.json()
    assert body["success"] is False
    assert body["error"] == "Route not found"
    assert body["message"] == "Cannot GET /api/v1/nowhere"
    assert "POST /api/v1/auth/register" in body["availableRoutes"]


def test_path_ids_must_be_integers(client, register):
    _, headers = register("farmer")
    res = client.get("/api/v1/predictions/not-a-number", headers=headers)
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_cors_allow_list(client):
    res = client.options(
        "/api/v1/auth/login",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert res.headers["access-control-allow-origin"] == "http://localhost:5173"

    res = client.options(
        "/api/v1/auth/login",
        headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert "access-control-allow-origin" not in res.headers
