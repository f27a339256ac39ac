def test_settings_defaults(client):
    r = client.get("/settings")
    assert r.status_code == 200
    body = r.json()
    assert body["optimizer"]["zone_mismatch_penalty"] == 30
    assert body["mapbox_token_configured"] is False


def test_settings_update_and_reload(client):
    r = client.post("/settings", json={"optimizer": {"zone_mismatch_penalty": 45, "strict_zones": True}})
    assert r.status_code == 200
    r = client.post("/admin/reload")
    assert r.json()["reloaded"]["optimizer"]["zone_mismatch_penalty"] == 45
    assert client.get("/config").json()["optimizer"]["strict_zones"] is True


def test_settings_rejects_bad_payloads(client):
    assert client.post("/settings", json={"weights": {}}).status_code == 400
    r = client.post("/settings", json={"optimizer": {"zone_mismatch_penalty": -5}})
    assert r.status_code == 400
    assert "Invalid optimizer settings" in r.json()["detail"]


def test_mapbox_token_round_trip(client):
    assert client.get("/settings/mapbox_token").json()["configured"] is False
    assert client.post("/settings/mapbox_token", json={"token": "   "}).status_code == 400

    r = client.post("/settings/mapbox_token", json={"token": "pk.abcdefghijkl"})
    assert r.status_code == 200
    assert r.json()["masked"] == "pk.a...ijkl"

    body = client.get("/settings/mapbox_token").json()
    assert body == {"configured": True, "source": "settings", "masked": "pk.a...ijkl"}
    assert "mapbox_token" not in client.get("/settings").json()
    assert client.get("/health").json()["drive_times"] == "mapbox"

    assert client.delete("/settings/mapbox_token").json()["removed"] is True
    assert client.get("/health").json()["mapbox_token_configured"] is False


def test_env_token_takes_precedence(client, monkeypatch):
    monkeypatch.setenv("MAPBOX_ACCESS_TOKEN", "pk.fromenvironment")
    body = client.get("/settings/mapbox_token").json()
    assert body["source"] == "env"
    assert client.get("/settings").json()["mapbox_token_configured"] is True
