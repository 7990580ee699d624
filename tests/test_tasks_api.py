import json


def _cache_key(settings, owner_id: int) -> str:
    return f"{settings.cache_namespace}l2:tasks:{owner_id}"


def test_create_and_read_back(register, client, api, bearer):
    token, user = register("owner@example.com")

    created = client.post(
        f"{api}/tasks",
        headers=bearer(token),
        json={"title": "A", "status": "pending", "priority": "medium"},
    )
    assert created.status_code == 201
    task = created.json()["data"]
    assert task["id"]
    assert task["owner_id"] == user["id"]
    assert task["created_at"] and task["updated_at"]

    fetched = client.get(f"{api}/tasks/{task['id']}", headers=bearer(token))
    assert fetched.status_code == 200
    data = fetched.json()["data"]
    assert data["title"] == "A"
    assert data["status"] == "pending"
    assert data["priority"] == "medium"
    assert data["id"] == task["id"]


def test_create_defaults_and_due_date(register, client, api, bearer):
    token, _ = register("defaults@example.com")

    task = client.post(
        f"{api}/tasks",
        headers=bearer(token),
        json={"title": "Write report", "description": "Q3", "due_date": "2026-12-01"},
    ).json()["data"]

    assert task["status"] == "pending"
    assert task["priority"] == "medium"
    assert task["description"] == "Q3"
    assert task["due_date"] == "2026-12-01"


def test_create_validation(register, client, api, bearer):
    token, _ = register("invalid@example.com")

    missing_title = client.post(f"{api}/tasks", headers=bearer(token), json={})
    assert missing_title.status_code == 422

    blank_title = client.post(f"{api}/tasks", headers=bearer(token), json={"title": "   "})
    assert blank_title.status_code == 422

    bad_status = client.post(
        f"{api}/tasks", headers=bearer(token), json={"title": "X", "status": "done"}
    )
    assert bad_status.status_code == 422
    assert bad_status.json()["error"]["details"][0]["field"] == "body.status"


def test_tasks_require_authentication(client, api):
    assert client.get(f"{api}/tasks").status_code == 401
    assert client.post(f"{api}/tasks", json={"title": "X"}).status_code == 401


def test_update_task(register, client, api, bearer):
    token, _ = register("updater@example.com")
    task = client.post(
        f"{api}/tasks", headers=bearer(token), json={"title": "Draft", "description": "tmp"}
    ).json()["data"]

    response = client.put(
        f"{api}/tasks/{task['id']}",
        headers=bearer(token),
        json={"status": "in-progress", "priority": "high", "description": None},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "in-progress"
    assert data["priority"] == "high"
    assert data["description"] is None
    assert data["title"] == "Draft"


def test_update_cannot_change_owner(register, client, api, bearer):
    token, _ = register("keeper@example.com")
    _, other = register("taker@example.com")
    task = client.post(f"{api}/tasks", headers=bearer(token), json={"title": "Mine"}).json()["data"]

    response = client.put(
        f"{api}/tasks/{task['id']}", headers=bearer(token), json={"owner_id": other["id"]}
    )
    assert response.status_code == 422


def test_delete_task_is_permanent(register, client, api, bearer):
    token, _ = register("deleter@example.com")
    task = client.post(f"{api}/tasks", headers=bearer(token), json={"title": "Bye"}).json()["data"]

    response = client.delete(f"{api}/tasks/{task['id']}", headers=bearer(token))
    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"id": task["id"]}}

    assert client.get(f"{api}/tasks/{task['id']}", headers=bearer(token)).status_code == 404
    assert client.delete(f"{api}/tasks/{task['id']}", headers=bearer(token)).status_code == 404


def test_other_users_task_looks_missing(register, client, api, bearer):
    owner_token, _ = register("u1@example.com")
    intruder_token, _ = register("u2@example.com")
    task = client.post(
        f"{api}/tasks", headers=bearer(owner_token), json={"title": "Private"}
    ).json()["data"]
    url = f"{api}/tasks/{task['id']}"

    missing = client.get(f"{api}/tasks/999999", headers=bearer(intruder_token))
    read = client.get(url, headers=bearer(intruder_token))
    update = client.put(url, headers=bearer(intruder_token), json={"title": "Hacked"})
    delete = client.delete(url, headers=bearer(intruder_token))

    for response in (read, update, delete):
        assert response.status_code == 404
        assert response.json() == missing.json()

    still_there = client.get(url, headers=bearer(owner_token)).json()["data"]
    assert still_there["title"] == "Private"

    intruder_list = client.get(f"{api}/tasks", headers=bearer(intruder_token)).json()["data"]
    assert intruder_list == []


def test_list_is_cached_with_fixed_ttl(register, client, api, bearer, fake_redis, settings):
    token, user = register("cached@example.com")
    client.post(f"{api}/tasks", headers=bearer(token), json={"title": "One"})

    first = client.get(f"{api}/tasks", headers=bearer(token))
    assert first.status_code == 200
    key = _cache_key(settings, user["id"])
    assert key in fake_redis.store
    assert fake_redis.ttls[key] == 300
    assert [t["title"] for t in json.loads(fake_redis.store[key])] == ["One"]

    # A hit is answered from the cache without touching the database.
    fake_redis.store[key] = "[]"
    assert client.get(f"{api}/tasks", headers=bearer(token)).json()["data"] == []


def test_writes_invalidate_cached_list(register, client, api, bearer, fake_redis, settings):
    token, user = register("coherent@example.com")
    key = _cache_key(settings, user["id"])

    assert client.get(f"{api}/tasks", headers=bearer(token)).json()["data"] == []
    assert key in fake_redis.store

    created = client.post(f"{api}/tasks", headers=bearer(token), json={"title": "New"})
    assert key not in fake_redis.store
    listed = client.get(f"{api}/tasks", headers=bearer(token)).json()["data"]
    assert [t["title"] for t in listed] == ["New"]

    task_id = created.json()["data"]["id"]
    client.put(f"{api}/tasks/{task_id}", headers=bearer(token), json={"title": "Renamed"})
    assert key not in fake_redis.store
    listed = client.get(f"{api}/tasks", headers=bearer(token)).json()["data"]
    assert [t["title"] for t in listed] == ["Renamed"]

    client.delete(f"{api}/tasks/{task_id}", headers=bearer(token))
    assert key not in fake_redis.store
    assert client.get(f"{api}/tasks", headers=bearer(token)).json()["data"] == []


def test_cache_is_per_user(register, client, api, bearer, fake_redis, settings):
    token_a, user_a = register("a@example.com")
    token_b, user_b = register("b@example.com")
    client.post(f"{api}/tasks", headers=bearer(token_a), json={"title": "A's"})

    client.get(f"{api}/tasks", headers=bearer(token_a))
    client.get(f"{api}/tasks", headers=bearer(token_b))
    client.post(f"{api}/tasks", headers=bearer(token_b), json={"title": "B's"})

    assert _cache_key(settings, user_a["id"]) in fake_redis.store
    assert _cache_key(settings, user_b["id"]) not in fake_redis.store


def test_filtered_list_bypasses_cache(register, client, api, bearer, fake_redis):
    token, _ = register("filter@example.com")
    client.post(f"{api}/tasks", headers=bearer(token), json={"title": "Low", "priority": "low"})
    client.post(
        f"{api}/tasks",
        headers=bearer(token),
        json={"title": "Done", "priority": "high", "status": "completed"},
    )

    by_priority = client.get(f"{api}/tasks", headers=bearer(token), params={"priority": "low"})
    assert [t["title"] for t in by_priority.json()["data"]] == ["Low"]

    by_status = client.get(
        f"{api}/tasks", headers=bearer(token), params={"status": "completed"}
    )
    assert [t["title"] for t in by_status.json()["data"]] == ["Done"]
    assert fake_redis.store == {}


def test_redis_outage_fails_open(register, client, api, bearer, fake_redis):
    token, _ = register("outage@example.com")
    fake_redis.fail = True

    created = client.post(f"{api}/tasks", headers=bearer(token), json={"title": "Still works"})
    assert created.status_code == 201

    listed = client.get(f"{api}/tasks", headers=bearer(token))
    assert listed.status_code == 200
    assert [t["title"] for t in listed.json()["data"]] == ["Still works"]


def test_unknown_route_uses_error_envelope(client, api):
    response = client.get(f"{api}/nothing-here")
    assert response.status_code == 404
    assert response.json()["success"] is False
    assert response.json()["error"]["code"] == "NOT_FOUND"
