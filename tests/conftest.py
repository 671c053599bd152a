import os
import tempfile
import uuid

_tmpdir = tempfile.mkdtemp(prefix="jobtrade-test-")
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(_tmpdir, "test.db")
os.environ["SEED_CATEGORIES"] = "1"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app import app  # noqa: E402
from db import engine  # noqa: E402
from models import Base  # noqa: E402
from seed import seed_categories  # noqa: E402

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    seed_categories()
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    def _make(role="requester", name=None, email=None):
        email = email or f"{role}-{uuid.uuid4().hex[:8]}@jobtrade.co.za"
        r = client.post(
            "/api/auth/signup",
            json={
                "role": role,
                "name": name or role.title(),
                "email": email,
                "password": PASSWORD,
                "confirmPassword": PASSWORD,
            },
        )
        assert r.status_code == 200, r.text
        data = r.json()
        return data["user"], bearer(data["token"])

    return _make


@pytest.fixture
def category_id(client):
    cats = client.get("/api/categories").json()
    return next(c["id"] for c in cats if c["name"] == "Plumbing")


@pytest.fixture
def make_job(client, category_id):
    def _make(headers, **overrides):
        body = {
            "title": "Fix sink",
            "description": "Kitchen sink is leaking under the cabinet",
            "categoryId": category_id,
            "latitude": "-26.2041",
            "longitude": "28.0473",
            "address": "12 Main Rd, Johannesburg",
        }
        body.update(overrides)
        r = client.post("/api/jobs", json=body, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _make


@pytest.fixture
def assigned_job(client, make_user, make_job):
    """A requester, a provider, and a job the provider has accepted."""
    requester, r_headers = make_user("requester", name="Rita")
    provider, p_headers = make_user("provider", name="Peter")
    job = make_job(r_headers)
    r = client.post(f"/api/jobs/{job['id']}/accept", headers=p_headers)
    assert r.status_code == 200, r.text
    return {
        "requester": requester,
        "r_headers": r_headers,
        "provider": provider,
        "p_headers": p_headers,
        "job": r.json(),
    }


@pytest.fixture
def completed_job(client, assigned_job):
    job_id = assigned_job["job"]["id"]
    for status in ("enroute", "onsite", "completed"):
        r = client.patch(f"/api/jobs/{job_id}", json={"status": status}, headers=assigned_job["p_headers"])
        assert r.status_code == 200, r.text
    assigned_job["job"] = r.json()
    return assigned_job
