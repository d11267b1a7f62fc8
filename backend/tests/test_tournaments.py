from fastapi.testclient import TestClient


def test_create_tournament(client: TestClient):
    """Test that creating a tournament stores its field count"""
    response = client.post(
        "/api/tournaments",
        json={"name": "Test Tournament", "location": "Test Location", "field_count": 3},
    )

    assert response.status_code == 201
    tournament_data = response.json()
    assert tournament_data["name"] == "Test Tournament"
    assert tournament_data["location"] == "Test Location"
    assert tournament_data["field_count"] == 3

    get_response = client.get(f"/api/tournaments/{tournament_data['id']}")
    assert get_response.status_code == 200
    assert get_response.json()["id"] == tournament_data["id"]


def test_tournament_name_trimmed(client: TestClient):
    response = client.post("/api/tournaments", json={"name": "  Padded  "})
    assert response.status_code == 201
    assert response.json()["name"] == "Padded"
    assert response.json()["field_count"] == 1


def test_tournament_validation_fails_on_blank_name(client: TestClient):
    """Test that tournament validation fails if name is blank"""
    response = client.post("/api/tournaments", json={"name": "   "})
    assert response.status_code == 422


def test_invalid_field_count_normalized(client: TestClient):
    """Non-numeric or non-positive field counts fall back to one field"""
    for value in ("many", 0, -4):
        response = client.post("/api/tournaments", json={"name": f"Fields {value}", "field_count": value})
        assert response.status_code == 201
        assert response.json()["field_count"] == 1

    response = client.post("/api/tournaments", json={"name": "Fractional", "field_count": 2.7})
    assert response.json()["field_count"] == 2


def test_list_tournaments(client: TestClient):
    client.post("/api/tournaments", json={"name": "First"})
    client.post("/api/tournaments", json={"name": "Second"})

    response = client.get("/api/tournaments")
    assert response.status_code == 200
    assert [t["name"] for t in response.json()] == ["First", "Second"]


def test_get_tournament_not_found(client: TestClient):
    response = client.get("/api/tournaments/999")
    assert response.status_code == 404


def test_list_stages_requires_tournament(client: TestClient):
    response = client.get("/api/tournaments/999/stages")
    assert response.status_code == 404
