from auth import create_token, hash_password
from db import get_session
from models import Role, User

from conftest import PASSWORD, bearer


def admin_headers():
    # admins are never created through signup
    with get_session() as s:
        u = User(
            role=Role.ADMIN.value,
            name="Ada Admin",
            email="admin@jobtrade.co.za",
            password_hash=hash_password(PASSWORD),
        )
        s.add(u)
        s.commit()
        s.refresh(u)
        return bearer(create_token(u))


def test_admin_lists_and_views_jobs_they_are_not_part_of(client, assigned_job):
    headers = admin_headers()
    job_id = assigned_job["job"]["id"]
    assert assigned_job["job"]["status"] == "accepted"

    r = client.get("/api/jobs", headers=headers)
    assert r.status_code == 200
    assert job_id in [j["id"] for j in r.json()]

    r = client.get(f"/api/jobs/{job_id}", headers=headers)
    assert r.status_code == 200


def test_admin_reads_but_cannot_send_messages(client, assigned_job):
    headers = admin_headers()
    job_id = assigned_job["job"]["id"]
    client.post(
        "/api/messages",
        json={"jobId": job_id, "messageText": "On my way"},
        headers=assigned_job["p_headers"],
    )

    r = client.get(f"/api/messages/{job_id}", headers=headers)
    assert r.status_code == 200
    assert [m["messageText"] for m in r.json()] == ["On my way"]

    r = client.post("/api/messages", json={"jobId": job_id, "messageText": "Admin here"}, headers=headers)
    assert r.status_code == 403

    history = client.get(f"/api/messages/{job_id}", headers=assigned_job["r_headers"]).json()
    assert len(history) == 1
