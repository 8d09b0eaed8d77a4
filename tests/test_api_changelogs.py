import asyncio

import pytest
from fastapi.testclient import TestClient

from changelog_api.api.main import create_app
from changelog_api.schemas import UserRole
from changelog_api.services.users import UserStore

from tests.conftest import (
    ANALYSIS_JSON,
    CHANGELOG_JSON,
    GOOD_TOKEN,
    OTHER_TOKEN,
    REQUEST_BODY,
    FakeGitHub,
    FakeLLM,
)


AUTH = {"Authorization": f"Bearer {GOOD_TOKEN}"}
OTHER_AUTH = {"Authorization": f"Bearer {OTHER_TOKEN}"}


@pytest.fixture
def client(settings, database):
    app = create_app(
        settings=settings,
        database=database,
        github=FakeGitHub(),
        llm_adapter=FakeLLM([ANALYSIS_JSON, CHANGELOG_JSON]),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def document(client):
    client.post("/api/repositories/sync", headers=AUTH)
    generation_id = client.post("/api/generations", json=REQUEST_BODY, headers=AUTH).json()["id"]
    response = client.post(f"/api/generations/{generation_id}/publish", headers=AUTH)
    assert response.status_code == 201
    return response.json()


def _promote(client, database, headers):
    user_id = client.get("/api/auth/me", headers=headers).json()["id"]
    asyncio.run(UserStore(database).set_role(user_id, UserRole.ADMIN))


def test_creator_reads_document(client, document):
    response = client.get(f"/api/changelogs/{document['id']}", headers=AUTH)
    assert response.status_code == 200
    assert response.json()["sections"][0]["title"] == "Features"

    listed = client.get("/api/changelogs", headers=AUTH).json()
    assert [d["id"] for d in listed["changelogs"]] == [document["id"]]
    assert client.get("/api/changelogs?status=published", headers=AUTH).json()["total"] == 0


def test_markdown_endpoint(client, document):
    response = client.get(f"/api/changelogs/{document['id']}/markdown", headers=AUTH)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text.startswith("# Widget export and stability fixes")


def test_other_user_cannot_see_draft(client, document):
    response = client.get(f"/api/changelogs/{document['id']}", headers=OTHER_AUTH)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "CHANGELOG_NOT_FOUND"


def test_update_draft(client, document):
    response = client.put(
        f"/api/changelogs/{document['id']}",
        json={"title": "Release 1.4", "status": "review"},
        headers=AUTH,
    )
    assert response.status_code == 200
    assert response.json()["title"] == "Release 1.4"
    assert response.json()["status"] == "review"


def test_update_cannot_publish(client, document):
    response = client.put(f"/api/changelogs/{document['id']}", json={"status": "published"}, headers=AUTH)
    assert response.status_code == 422


def test_publish_flow(client, document):
    """Publishing exposes the document on the public endpoints."""
    changelog_id = document["id"]
    assert client.get(f"/api/public/changelogs/{changelog_id}").status_code == 404

    published = client.post(f"/api/changelogs/{changelog_id}/publish", headers=AUTH)
    assert published.status_code == 200
    assert published.json()["status"] == "published"
    assert published.json()["published_at"] is not None

    again = client.post(f"/api/changelogs/{changelog_id}/publish", headers=AUTH)
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "ALREADY_PUBLISHED"

    public = client.get("/api/public/changelogs", params={"repository": "acme/widgets"}).json()
    assert [d["id"] for d in public["changelogs"]] == [changelog_id]
    assert client.get(f"/api/public/changelogs/{changelog_id}").json()["id"] == changelog_id


def test_published_document_is_read_only(client, document):
    changelog_id = document["id"]
    client.post(f"/api/changelogs/{changelog_id}/publish", headers=AUTH)

    assert client.put(f"/api/changelogs/{changelog_id}", json={"title": "x"}, headers=AUTH).status_code == 403
    assert client.delete(f"/api/changelogs/{changelog_id}", headers=AUTH).status_code == 403
    assert client.post(f"/api/changelogs/{changelog_id}/unpublish", headers=AUTH).status_code == 403


def test_admin_unpublishes(client, database, document):
    changelog_id = document["id"]
    client.post(f"/api/changelogs/{changelog_id}/publish", headers=AUTH)
    _promote(client, database, OTHER_AUTH)

    response = client.post(f"/api/changelogs/{changelog_id}/unpublish", headers=OTHER_AUTH)
    assert response.status_code == 200
    assert response.json()["status"] == "draft"
    assert client.get(f"/api/public/changelogs/{changelog_id}").status_code == 404


def test_delete_document(client, document):
    changelog_id = document["id"]
    assert client.delete(f"/api/changelogs/{changelog_id}", headers=AUTH).status_code == 204
    assert client.get(f"/api/changelogs/{changelog_id}", headers=AUTH).status_code == 404


MANUAL_BODY = {
    "repository_ref": "acme/widgets",
    "version": "2.0.0",
    "title": "Widgets 2.0",
    "branch": "main",
    "start_date": "2025-03-01T00:00:00Z",
    "end_date": "2025-03-31T00:00:00Z",
    "sections": [{"title": "Features", "changes": [{"description": "New widget canvas", "type": "feature"}]}],
}


def test_create_manual_changelog(client):
    client.post("/api/repositories/sync", headers=AUTH)

    created = client.post("/api/changelogs", json=MANUAL_BODY, headers=AUTH)
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "draft"
    assert body["metadata"]["generation_method"] == "manual"
    assert body["sections"][0]["changes"][0]["impact"] == "minor"
    assert client.get(f"/api/changelogs/{body['id']}", headers=AUTH).status_code == 200

    duplicate = client.post("/api/changelogs", json=MANUAL_BODY, headers=OTHER_AUTH)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "VERSION_EXISTS"


def test_create_manual_changelog_validation(client):
    client.post("/api/repositories/sync", headers=AUTH)

    unknown = client.post("/api/changelogs", json={**MANUAL_BODY, "repository_ref": "acme/unknown"}, headers=AUTH)
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["code"] == "REPOSITORY_NOT_FOUND"

    inverted = {**MANUAL_BODY, "start_date": "2025-04-01T00:00:00Z"}
    assert client.post("/api/changelogs", json=inverted, headers=AUTH).status_code == 422
    assert client.post("/api/changelogs", json=MANUAL_BODY).status_code == 401
