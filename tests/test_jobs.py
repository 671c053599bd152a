def test_create_job_starts_open(client, make_user, make_job, category_id):
    requester, headers = make_user()
    job = make_job(headers)

    assert job["status"] == "open"
    assert job["providerId"] is None
    assert job["provider"] is None
    assert job["requesterId"] == requester["id"]
    assert job["requester"]["name"] == requester["name"]
    assert job["category"]["id"] == category_id
    assert job["urgency"] == "normal"
    assert job["photos"] == []


def test_create_job_lists_each_missing_field(client, make_user):
    _, headers = make_user()
    r = client.post("/api/jobs", json={"latitude": "0", "longitude": "0"}, headers=headers)
    assert r.status_code == 400
    paths = {e["path"] for e in r.json()["errors"]}
    assert {"title", "description", "categoryId"} <= paths


def test_create_job_blank_title(client, make_user, category_id):
    _, headers = make_user()
    r = client.post(
        "/api/jobs",
        json={"title": "   ", "description": "x", "categoryId": category_id, "latitude": "0", "longitude": "0"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["errors"][0]["path"] == "title"


def test_create_job_unknown_category(client, make_user):
    _, headers = make_user()
    r = client.post(
        "/api/jobs",
        json={"title": "t", "description": "d", "categoryId": 9999, "latitude": "0", "longitude": "0"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["errors"] == [{"path": "categoryId", "message": "Unknown category"}]


def test_provider_cannot_create_job(client, make_user, category_id):
    _, headers = make_user("provider")
    r = client.post(
        "/api/jobs",
        json={"title": "t", "description": "d", "categoryId": category_id, "latitude": "0", "longitude": "0"},
        headers=headers,
    )
    assert r.status_code == 403
    assert client.get("/api/jobs", headers=headers).json() == []


def test_requester_cannot_accept(client, make_user, make_job):
    _, r_headers = make_user()
    job = make_job(r_headers)

    r = client.post(f"/api/jobs/{job['id']}/accept", headers=r_headers)
    assert r.status_code == 403

    detail = client.get(f"/api/jobs/{job['id']}", headers=r_headers).json()
    assert detail["status"] == "open"
    assert detail["providerId"] is None


def test_accept_assigns_provider(client, make_user, make_job):
    _, r_headers = make_user()
    provider, p_headers = make_user("provider")
    job = make_job(r_headers)

    r = client.post(f"/api/jobs/{job['id']}/accept", headers=p_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "accepted"
    assert r.json()["providerId"] == provider["id"]
    assert r.json()["provider"]["id"] == provider["id"]


def test_second_accept_conflicts(client, make_user, make_job):
    _, r_headers = make_user()
    first, p1 = make_user("provider")
    _, p2 = make_user("provider")
    job = make_job(r_headers)

    assert client.post(f"/api/jobs/{job['id']}/accept", headers=p1).status_code == 200
    r = client.post(f"/api/jobs/{job['id']}/accept", headers=p2)
    assert r.status_code == 409
    assert r.json()["message"] == "Job already accepted"

    detail = client.get(f"/api/jobs/{job['id']}", headers=r_headers).json()
    assert detail["providerId"] == first["id"]


def test_accept_missing_job(client, make_user):
    _, p_headers = make_user("provider")
    r = client.post("/api/jobs/does-not-exist/accept", headers=p_headers)
    assert r.status_code == 404


def test_forward_progression(client, assigned_job):
    job_id = assigned_job["job"]["id"]
    headers = assigned_job["p_headers"]

    for status in ("enroute", "onsite", "completed"):
        r = client.patch(f"/api/jobs/{job_id}", json={"status": status}, headers=headers)
        assert r.status_code == 200
        assert r.json()["status"] == status


def test_cannot_skip_a_status(client, assigned_job):
    job_id = assigned_job["job"]["id"]
    r = client.patch(f"/api/jobs/{job_id}", json={"status": "onsite"}, headers=assigned_job["p_headers"])
    assert r.status_code == 409


def test_cannot_move_backwards(client, assigned_job):
    job_id = assigned_job["job"]["id"]
    headers = assigned_job["p_headers"]
    client.patch(f"/api/jobs/{job_id}", json={"status": "enroute"}, headers=headers)
    r = client.patch(f"/api/jobs/{job_id}", json={"status": "accepted"}, headers=headers)
    assert r.status_code == 409


def test_unknown_status_value(client, assigned_job):
    job_id = assigned_job["job"]["id"]
    r = client.patch(f"/api/jobs/{job_id}", json={"status": "teleported"}, headers=assigned_job["p_headers"])
    assert r.status_code == 400


def test_only_assigned_provider_advances(client, make_user, assigned_job):
    job_id = assigned_job["job"]["id"]
    _, other_provider = make_user("provider")

    r = client.patch(f"/api/jobs/{job_id}", json={"status": "enroute"}, headers=assigned_job["r_headers"])
    assert r.status_code == 403
    r = client.patch(f"/api/jobs/{job_id}", json={"status": "enroute"}, headers=other_provider)
    assert r.status_code == 403

    detail = client.get(f"/api/jobs/{job_id}", headers=assigned_job["r_headers"]).json()
    assert detail["status"] == "accepted"


def test_terminal_states_are_final(client, completed_job):
    job_id = completed_job["job"]["id"]
    for headers in (completed_job["p_headers"], completed_job["r_headers"]):
        r = client.patch(f"/api/jobs/{job_id}", json={"status": "cancelled"}, headers=headers)
        assert r.status_code == 409


def test_requester_cancels_open_job(client, make_user, make_job):
    _, headers = make_user()
    job = make_job(headers)

    r = client.patch(f"/api/jobs/{job['id']}", json={"status": "cancelled"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    r = client.patch(f"/api/jobs/{job['id']}", json={"status": "cancelled"}, headers=headers)
    assert r.status_code == 409


def test_cancelled_job_cannot_be_accepted(client, make_user, make_job):
    _, headers = make_user()
    _, p_headers = make_user("provider")
    job = make_job(headers)
    client.patch(f"/api/jobs/{job['id']}", json={"status": "cancelled"}, headers=headers)

    r = client.post(f"/api/jobs/{job['id']}/accept", headers=p_headers)
    assert r.status_code == 409


def test_completion_counts_for_provider(client, completed_job):
    me = client.get("/api/profile", headers=completed_job["p_headers"]).json()
    assert me["providerProfile"]["completedJobsCount"] == 1


def test_non_participant_sees_only_open_jobs(client, make_user, make_job, assigned_job):
    _, stranger = make_user()
    job_id = assigned_job["job"]["id"]
    open_job = make_job(assigned_job["r_headers"], title="Paint fence")

    assert client.get(f"/api/jobs/{job_id}", headers=stranger).status_code == 403
    assert client.get(f"/api/jobs/{open_job['id']}", headers=stranger).status_code == 200

    ids = [j["id"] for j in client.get("/api/jobs", headers=stranger).json()]
    assert ids == [open_job["id"]]

    # participants still see their assigned job
    ids = {j["id"] for j in client.get("/api/jobs", headers=assigned_job["p_headers"]).json()}
    assert job_id in ids


def test_get_missing_job(client, make_user):
    _, headers = make_user()
    r = client.get("/api/jobs/nope", headers=headers)
    assert r.status_code == 404
    assert r.json() == {"message": "Job not found"}


def test_list_filters(client, make_user, make_job):
    _, headers = make_user()
    cats = {c["name"]: c["id"] for c in client.get("/api/categories").json()}
    make_job(headers, title="Leak")
    wiring = make_job(headers, title="Wiring", categoryId=cats["Electrical"])

    jobs = client.get("/api/jobs", params={"category": cats["Electrical"]}, headers=headers).json()
    assert [j["id"] for j in jobs] == [wiring["id"]]

    jobs = client.get("/api/jobs", params={"category": "all"}, headers=headers).json()
    assert len(jobs) == 2

    jobs = client.get("/api/jobs", params={"status": "accepted"}, headers=headers).json()
    assert jobs == []

    assert client.get("/api/jobs", params={"status": "bogus"}, headers=headers).status_code == 400
    assert client.get("/api/jobs", params={"category": "abc"}, headers=headers).status_code == 400


def test_sort_recent_and_urgent(client, make_user, make_job):
    _, headers = make_user()
    first = make_job(headers, title="Emergency leak", urgency="emergency")
    second = make_job(headers, title="Dripping tap")

    recent = client.get("/api/jobs", params={"sort": "recent"}, headers=headers).json()
    assert [j["id"] for j in recent] == [second["id"], first["id"]]

    urgent = client.get("/api/jobs", params={"sort": "urgent"}, headers=headers).json()
    assert [j["id"] for j in urgent] == [first["id"], second["id"]]


def test_sort_distance(client, make_user, make_job):
    _, headers = make_user()
    far = make_job(headers, title="Cape Town job", latitude="-33.9249", longitude="18.4241")
    near = make_job(headers, title="Soweto job", latitude="-26.2485", longitude="27.8540")

    jobs = client.get(
        "/api/jobs",
        params={"sort": "distance", "latitude": -26.2041, "longitude": 28.0473},
        headers=headers,
    ).json()
    assert [j["id"] for j in jobs] == [near["id"], far["id"]]


def test_unknown_sort(client, make_user):
    _, headers = make_user()
    assert client.get("/api/jobs", params={"sort": "price"}, headers=headers).status_code == 400


def test_provider_recent_jobs(client, assigned_job, make_user):
    r = client.get("/api/provider/recent-jobs", headers=assigned_job["p_headers"])
    assert r.status_code == 200
    assert [j["id"] for j in r.json()] == [assigned_job["job"]["id"]]

    assert client.get("/api/provider/recent-jobs", headers=assigned_job["r_headers"]).status_code == 403
