from fastapi.testclient import TestClient


def test_root_greets_in_plain_text(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "Hello from server"
    assert response.headers["content-type"].startswith("text/plain")


def test_health_returns_ok(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
