JOBS = [
    {"id": "j1", "customerName": "Ann", "address": "1 Elm St", "zone": "Zone 1", "jobType": "install",
     "timeframeStart": "08:00", "timeframeEnd": "12:00", "duration": 1},
    {"id": "j2", "customerName": "Bo", "address": "2 Oak St", "zone": "Zone 2", "jobType": "check",
     "timeframeStart": "13:00", "timeframeEnd": "17:00", "duration": 1},
    {"id": "", "customerName": "Nobody", "address": "", "timeframeStart": "08:00", "timeframeEnd": "09:00"},
]
STAFF = [
    {"id": "t1", "name": "Tess", "zone": "Zone 1", "type": "regularTech"},
    {"id": "t2", "name": "Tom", "zone": "Zone 2", "type": "regularTech"},
]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["drive_times"] == "heuristic"
    assert body["mapbox_token_configured"] is False


def test_validate(client):
    r = client.post("/plan/validate", json={"jobs": JOBS})
    assert r.status_code == 200
    body = r.json()
    assert [j["id"] for j in body["validJobs"]] == ["j1", "j2"]
    assert body["invalidJobs"][0]["id"] == "row_3"
    assert body["stats"]["successRate"] == 66.7


def test_optimize(client):
    r = client.post("/plan/optimize", json={"jobs": JOBS, "staff": STAFF})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["assignment"] == {"t1": ["j1"], "t2": ["j2"]}
    assert body["metadata"]["degraded"] is True
    assert body["metadata"]["driveTimeSource"] == "heuristic"
    assert len(body["exceptions"]["invalidJobs"]) == 1
    stop = body["routes"][0]["stops"][0]
    assert stop["jobId"] == "j1"
    assert stop["arrivalTime"] == "08:35"


def test_optimize_rejects_unknown_storm_filter(client):
    r = client.post("/plan/optimize", json={"jobs": JOBS, "staff": STAFF, "stormFilter": "tornado"})
    assert r.status_code == 400
    assert "tornado" in r.json()["detail"]


def test_storm_filters(client):
    r = client.get("/plan/storm_filters")
    assert r.status_code == 200
    assert [f["value"] for f in r.json()] == [
        "all", "subCrewsAndDemos", "checkServices", "installs", "pulls", "regularOnly",
    ]


def test_sequence(client):
    payload = {
        "tech": STAFF[0],
        "jobIds": ["j1"],
        "jobs": JOBS[:2],
        "plan": {"routes": {"t1": ["j1"]}},
    }
    r = client.post("/plan/sequence", json=payload)
    assert r.status_code == 200, r.text
    assert [s["jobId"] for s in r.json()["stops"]] == ["j1"]

    payload["jobIds"] = ["j2"]
    r = client.post("/plan/sequence", json=payload)
    assert r.status_code == 400
    assert "not assigned" in r.json()["detail"]


def test_override(client):
    base = {"plan": {"routes": {"t1": ["j1"], "t2": []}}, "jobs": JOBS[:2], "staff": STAFF}
    r = client.post("/plan/override", json=dict(base, command={"action": "reassign", "jobId": "j1", "techIds": ["t2"]}))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["applied"] is True
    assert body["plan"]["routes"] == {"t1": [], "t2": ["j1"]}

    r = client.post("/plan/override", json=dict(base, command={"action": "unassign", "jobId": "j2"}))
    assert r.status_code == 400


def test_capability_check(client):
    r = client.post("/plan/capability_check", json={
        "staff": {"id": "pm1", "name": "Pat", "type": "projectManager"},
        "jobType": "pull",
        "jobId": "j9",
    })
    assert r.status_code == 200
    body = r.json()
    assert body["capable"] is False
    assert body["requiredCapability"] == "pull"
    assert body["requiredLabel"] == "Pull"
    assert body["violation"]["message"] == "Pat (PM) is not authorized for Pull jobs (requires Pull)"


def test_import_rows_and_manual_timeframe(client):
    rows = [
        {"text": "1001", "route_title": "Smith | 1001 | Install | Zone 2", "customer_address": "1 Elm",
         "route_description": "TF(9a-1p)", "duration": "2"},
        {"text": "1002", "route_title": "Jones | 1002 | Pull | Zone 1", "customer_address": "2 Oak",
         "route_description": "TF(whenever)"},
    ]
    r = client.post("/plan/import", json={"rows": rows})
    assert r.status_code == 200
    body = r.json()
    assert [rec["id"] for rec in body["records"]] == ["1001"]
    held = body["needsManualTimeframe"][0]
    assert held["originalTimeframe"] == "whenever"

    r = client.post("/plan/import/manual_timeframe",
                    json={"record": held, "timeframeStart": "10:00", "timeframeEnd": "12:00"})
    assert r.status_code == 200
    fixed = r.json()
    assert fixed["isValid"] is True
    assert fixed["record"]["timeframeStart"] == "10:00"


def test_import_csv_upload(client):
    csv = (
        "text,route_title,customer_address,route_description\n"
        "1001,Smith | 1001 | Install | Zone 2,1 Elm St,TF(9a-1p)\n"
    )
    r = client.post("/plan/import_csv", files={"file": ("today.csv", csv.encode("utf-8"), "text/csv")})
    assert r.status_code == 200, r.text
    assert r.json()["validation"]["stats"]["valid"] == 1

    r = client.post("/plan/import_csv", files={"file": ("today.txt", csv.encode("utf-8"), "text/plain")})
    assert r.status_code == 400


def test_conflicts(client):
    r = client.post("/plan/conflicts", json={
        "plan": {"routes": {"t1": ["j1"], "t2": ["j1"]}},
        "jobs": JOBS[:2],
        "staff": STAFF,
    })
    assert r.status_code == 200, r.text
    (c,) = r.json()
    assert (c["type"], c["severity"], c["jobId"]) == ("duplicate-assignment", "critical", "j1")
    assert c["message"] == 'Job "Ann" assigned to Tess and Tom'


def test_recommend(client):
    base = {"plan": {"routes": {"t1": ["j1"], "t2": []}}, "jobs": JOBS[:2], "staff": STAFF}
    r = client.post("/plan/recommend", json=dict(base, jobId="j2"))
    assert r.status_code == 200, r.text
    body = r.json()
    assert [(x["techId"], x["score"]) for x in body] == [("t2", 100), ("t1", 90)]
    assert body[0]["reasons"][1] == "Same zone (Zone 2)"

    r = client.post("/plan/recommend", json=dict(base, jobId="j2", limit=1))
    assert [x["techId"] for x in r.json()] == ["t2"]

    r = client.post("/plan/recommend", json=dict(base, jobId="nope"))
    assert r.status_code == 400
    assert "nope" in r.json()["detail"]
