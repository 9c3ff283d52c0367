from fastapi.testclient import TestClient

from backend.app.main import OPERATOR_CONSOLE_ORIGINS, _parse_origins, _resolve_allowed_origins, app


def test_parse_origins_accepts_commas_and_whitespace():
    raw = "https://console.example.com/, http://127.0.0.1:8080 https://console.example.com"

    assert _parse_origins(raw) == ["http://127.0.0.1:8080", "https://console.example.com"]
    assert _parse_origins("") == []


def test_operator_console_origins_are_always_allowed(monkeypatch):
    monkeypatch.setenv("BACKEND_ALLOWED_ORIGINS", "https://console.example.com")

    origins = _resolve_allowed_origins()

    assert "https://console.example.com" in origins
    assert set(OPERATOR_CONSOLE_ORIGINS) <= set(origins)


def test_closures_endpoint_includes_cors_headers_for_local_console(monkeypatch):
    monkeypatch.setenv("RUN_MIGRATIONS_ON_START", "0")
    client = TestClient(app)
    origin = OPERATOR_CONSOLE_ORIGINS[0]

    response = client.options(
        "/closures",
        headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
    )

    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == origin
