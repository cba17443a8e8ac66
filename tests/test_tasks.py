def _add(client, user, **body):
    body.setdefault("title", "A")
    return client.post("/api/Task/Add", json=body, headers=user["headers"])


def _find_in_all_tasks(client, admin, task_id):
    page = 1
    while True:
        body = client.get(f"/api/Task/GetAllTasks?pageNumber={page}&pageSize=100", headers=admin["headers"]).json()
        for task in body["tasks"]:
            if task["id"] == task_id:
                return task
        if page >= body["pageInfo"]["totalPages"]:
            return None
        page += 1


def test_add_returns_201_with_location(client, user_factory):
    user = user_factory()
    resp = _add(client, user, title="A", status="Pending", description="first")
    assert resp.status_code == 201
    task = resp.json()["task"]
    assert task["title"] == "A" and task["status"] == "Pending"
    assert resp.headers["Location"].endswith(f"/api/Task/SpecificTask/{task['id']}")


def test_tasks_are_private_to_their_owner(client, user_factory, admin):
    owner, other = user_factory(), user_factory()
    task_id = _add(client, owner, title="A").json()["task"]["id"]

    assert client.get("/api/Task/GetAllTasks", headers=other["headers"]).status_code == 403
    mine = client.get("/api/Task/MyTasks", headers=other["headers"]).json()
    assert task_id not in [t["id"] for t in mine["tasks"]]

    seen = _find_in_all_tasks(client, admin, task_id)
    assert seen is not None
    assert seen["userName"] == owner["username"]


def test_foreign_task_looks_missing(client, user_factory, admin):
    owner, other = user_factory(), user_factory()
    task_id = _add(client, owner, title="A").json()["task"]["id"]

    assert client.get(f"/api/Task/SpecificTask/{task_id}", headers=other["headers"]).status_code == 404
    upd = client.put(f"/api/Task/Update/{task_id}", json={"title": "hijack"}, headers=other["headers"])
    assert upd.status_code == 404
    assert client.delete(f"/api/Task/Delete/{task_id}", headers=other["headers"]).status_code == 404
    assert client.get("/api/Task/SpecificTask/999999", headers=owner["headers"]).status_code == 404

    own = client.get(f"/api/Task/SpecificTask/{task_id}", headers=owner["headers"])
    assert own.status_code == 200 and own.json()["task"]["title"] == "A"
    assert client.get(f"/api/Task/SpecificTask/{task_id}", headers=admin["headers"]).status_code == 200


def test_owner_and_admin_can_update_and_delete(client, user_factory, admin):
    owner = user_factory()
    first = _add(client, owner, title="A").json()["task"]["id"]
    second = _add(client, owner, title="B").json()["task"]["id"]

    upd = client.put(f"/api/Task/Update/{first}", json={"title": "A2", "status": "Done"}, headers=owner["headers"])
    assert upd.status_code == 200
    assert upd.json()["task"]["status"] == "Done"

    upd = client.put(f"/api/Task/Update/{second}", json={"title": "B2", "status": "InProgress"},
                     headers=admin["headers"])
    assert upd.status_code == 200

    assert client.delete(f"/api/Task/Delete/{first}", headers=owner["headers"]).status_code == 200
    assert client.delete(f"/api/Task/Delete/{second}", headers=admin["headers"]).status_code == 200
    assert client.get(f"/api/Task/SpecificTask/{first}", headers=owner["headers"]).status_code == 404


def test_invalid_task_payloads_are_400(client, user_factory):
    user = user_factory()
    resp = _add(client, user, title="A", status="Finished")
    assert resp.status_code == 400
    assert resp.json()["error"] == "VALIDATION_ERROR"
    assert _add(client, user, title="").status_code == 400


def test_count_and_cache_invalidation(client, user_factory):
    user = user_factory()
    empty = client.get("/api/Task/MyTasks", headers=user["headers"]).json()
    assert empty["tasks"] == []
    assert empty["message"] == "No tasks found for this user."

    _add(client, user, title="A")
    _add(client, user, title="B")

    # the cached empty page must not survive a write
    listed = client.get("/api/Task/MyTasks", headers=user["headers"]).json()
    assert [t["title"] for t in listed["tasks"]] == ["A", "B"]
    assert client.get("/api/Task/Count", headers=user["headers"]).json()["count"] == 2

    task_id = listed["tasks"][0]["id"]
    client.delete(f"/api/Task/Delete/{task_id}", headers=user["headers"])
    listed = client.get("/api/Task/MyTasks", headers=user["headers"]).json()
    assert [t["title"] for t in listed["tasks"]] == ["B"]


def test_deleting_a_user_removes_their_tasks(client, user_factory, admin):
    owner = user_factory()
    task_id = _add(client, owner, title="doomed").json()["task"]["id"]
    user_id = client.get("/api/User/UserProfile", headers=owner["headers"]).json()["user"]["id"]

    resp = client.delete(f"/api/User/AdminDelete/{user_id}", headers=admin["headers"])
    assert resp.status_code == 200
    assert client.get(f"/api/Task/SpecificTask/{task_id}", headers=admin["headers"]).status_code == 404
    assert _find_in_all_tasks(client, admin, task_id) is None
