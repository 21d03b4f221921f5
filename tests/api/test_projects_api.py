import pytest

API = "/api/v1/projects"


@pytest.fixture
def admin(register_user, promote_admin):
    _, headers = register_user(email="admin@example.com", name="Admin")
    promote_admin("admin@example.com")
    return headers


def _create(client, headers, **fields):
    body = {"name": "Samay", "description": "Time tracking", "icon": "clock", **fields}
    return client.post(API, json=body, headers=headers)


def test_only_admins_create_projects(client, admin, register_user):
    _, user = register_user()
    assert _create(client, user).status_code == 403

    response = _create(client, admin)
    assert response.status_code == 201
    project = response.json()["data"]
    assert project["name"] == "Samay"
    assert project["users"] == []


def test_project_validation(client, admin):
    assert _create(client, admin, name="").status_code == 400
    assert _create(client, admin, name="x" * 101).status_code == 400
    assert _create(client, admin, icon="").status_code == 400


def test_membership_controls_visibility(client, admin, register_user):
    ada_id, ada = register_user(email="ada@example.com", name="Ada")
    project_id = _create(client, admin).json()["data"]["id"]
    _create(client, admin, name="Other")

    assert client.get(API, headers=ada).json()["data"] == []
    assert len(client.get(API, headers=admin).json()["data"]) == 2
    assert client.get(f"{API}/{project_id}", headers=ada).status_code == 404

    response = client.post(f"{API}/{project_id}/users", json={"userIds": [ada_id]}, headers=admin)
    assert response.status_code == 200
    assert [m["email"] for m in response.json()["data"]["users"]] == ["ada@example.com"]

    visible = client.get(API, headers=ada).json()["data"]
    assert [p["id"] for p in visible] == [project_id]
    assert client.get(f"{API}/{project_id}", headers=ada).status_code == 200


def test_remove_and_reactivate_member(client, admin, register_user):
    ada_id, ada = register_user(email="ada@example.com")
    project_id = _create(client, admin).json()["data"]["id"]
    client.post(f"{API}/{project_id}/users", json={"userIds": [ada_id]}, headers=admin)

    assert client.delete(f"{API}/{project_id}/users/{ada_id}", headers=admin).status_code == 200
    assert client.get(API, headers=ada).json()["data"] == []
    assert client.get(f"{API}/{project_id}", headers=admin).json()["data"]["users"] == []

    response = client.post(f"{API}/{project_id}/users", json={"userIds": [ada_id]}, headers=admin)
    assert [m["userId"] for m in response.json()["data"]["users"]] == [ada_id]


def test_add_unknown_user(client, admin):
    project_id = _create(client, admin).json()["data"]["id"]
    response = client.post(
        f"{API}/{project_id}/users",
        json={"userIds": ["00000000-0000-0000-0000-000000000000"]},
        headers=admin,
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "USER_NOT_FOUND"


def test_update_and_delete_project(client, admin):
    project_id = _create(client, admin).json()["data"]["id"]

    response = client.put(f"{API}/{project_id}", json={"description": "Renamed"}, headers=admin)
    assert response.status_code == 200
    assert response.json()["data"]["description"] == "Renamed"
    assert response.json()["data"]["name"] == "Samay"

    assert client.delete(f"{API}/{project_id}", headers=admin).status_code == 200
    assert client.get(f"{API}/{project_id}", headers=admin).status_code == 404
    assert client.delete(f"{API}/{project_id}", headers=admin).status_code == 404
