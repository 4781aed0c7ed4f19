# tests/test_tasks_api.py

from __future__ import annotations

import asyncio
import gc

import httpx
import pytest

from taskhub.main import create_app

from .conftest import create_task, create_user, get_user


def test_assignment_round_trip(client) -> None:
    ann = create_user(client, name="Ann", email="a@x.com")
    task = create_task(client, name="Write spec", deadline="2024-01-01", assignedUser=ann["_id"])

    assert get_user(client, ann["_id"])["pendingTasks"] == [task["_id"]]

    r = client.put(
        f"/api/tasks/{task['_id']}",
        json={"name": "Write spec", "deadline": "2024-01-01", "assignedUser": ""},
    )
    assert r.status_code == 200
    assert r.json()["message"] == "Task updated"
    assert r.json()["data"]["assignedUser"] == ""
    assert get_user(client, ann["_id"])["pendingTasks"] == []


def test_create_applies_defaults(client) -> None:
    r = client.post("/api/tasks", json={"name": "Plain", "deadline": "2024-03-05T10:30:00Z"})

    assert r.status_code == 201
    body = r.json()
    assert body["message"] == "Task created"
    task = body["data"]
    assert len(task["_id"]) == 24
    assert task["description"] == ""
    assert task["completed"] is False
    assert task["assignedUser"] == ""
    assert task["assignedUserName"] == "unassigned"
    assert task["deadline"] == "2024-03-05T10:30:00.000Z"


def test_create_requires_name_and_deadline(client) -> None:
    for payload in ({"name": "No deadline"}, {"deadline": "2024-01-01"}, {"name": "", "deadline": "2024-01-01"}):
        r = client.post("/api/tasks", json=payload)
        assert r.status_code == 400
        assert r.json()["message"] == "Name and deadline are required"

    assert client.get("/api/tasks", params={"count": "true"}).json()["data"] == 0


def test_unparseable_deadline_is_client_error(client) -> None:
    r = client.post("/api/tasks", json={"name": "Bad", "deadline": "not a date"})

    assert r.status_code == 400
    assert r.json()["message"] == "Bad Request"


def test_dangling_assignment_is_accepted(client) -> None:
    r = client.post(
        "/api/tasks",
        json={"name": "Orphan", "deadline": "2024-01-01", "assignedUser": "0" * 24, "assignedUserName": "Ghost"},
    )

    assert r.status_code == 201
    assert r.json()["data"]["assignedUser"] == "0" * 24
    assert r.json()["data"]["assignedUserName"] == "Ghost"


def test_reassignment_moves_task_between_users(client) -> None:
    a = create_user(client, name="A", email="a@example.com")
    b = create_user(client, name="B", email="b@example.com")
    task = create_task(client, name="Move me", assignedUser=a["_id"])

    r = client.put(
        f"/api/tasks/{task['_id']}",
        json={"name": "Move me", "deadline": "2024-01-01", "assignedUser": b["_id"], "assignedUserName": "B"},
    )

    assert r.status_code == 200
    assert task["_id"] not in get_user(client, a["_id"])["pendingTasks"]
    assert get_user(client, b["_id"])["pendingTasks"].count(task["_id"]) == 1


def test_reassigning_to_same_user_keeps_single_entry(client) -> None:
    a = create_user(client, name="A", email="a@example.com")
    first = create_task(client, name="First", assignedUser=a["_id"])
    task = create_task(client, name="Same", assignedUser=a["_id"])

    for _ in range(2):
        r = client.put(
            f"/api/tasks/{task['_id']}",
            json={"name": "Same", "deadline": "2024-01-02", "assignedUser": a["_id"], "completed": True},
        )
        assert r.status_code == 200

    pending = get_user(client, a["_id"])["pendingTasks"]
    assert pending.count(task["_id"]) == 1
    assert pending.count(first["_id"]) == 1


def test_update_is_full_replacement(client) -> None:
    task = create_task(client, name="Full", description="details", completed=True)

    r = client.put(f"/api/tasks/{task['_id']}", json={"name": "Renamed", "deadline": "2025-06-01"})

    data = r.json()["data"]
    assert data["name"] == "Renamed"
    assert data["description"] == ""
    assert data["completed"] is False
    assert data["dateCreated"] == task["dateCreated"]


def test_update_missing_task(client) -> None:
    r = client.put("/api/tasks/" + "f" * 24, json={"name": "x", "deadline": "2024-01-01"})

    assert r.status_code == 404
    assert r.json() == {"message": "Task not found", "data": {}}


def test_update_validates_before_lookup(client) -> None:
    r = client.put("/api/tasks/" + "f" * 24, json={"name": "x"})

    assert r.status_code == 400


def test_delete_removes_task_from_assignee(client) -> None:
    a = create_user(client, name="A", email="a@example.com")
    keep = create_task(client, name="Keep", assignedUser=a["_id"])
    task = create_task(client, name="Drop", assignedUser=a["_id"])

    r = client.delete(f"/api/tasks/{task['_id']}")

    assert r.status_code == 204
    assert r.content == b""
    assert get_user(client, a["_id"])["pendingTasks"] == [keep["_id"]]
    assert client.get(f"/api/tasks/{task['_id']}").status_code == 404


def test_delete_missing_task_touches_nothing(client) -> None:
    a = create_user(client, name="A", email="a@example.com", pendingTasks=["f" * 24])

    r = client.delete("/api/tasks/" + "f" * 24)

    assert r.status_code == 404
    assert get_user(client, a["_id"])["pendingTasks"] == ["f" * 24]


def test_delete_with_dangling_assignee(client) -> None:
    task = create_task(client, name="Orphan", assignedUser="0" * 24)

    assert client.delete(f"/api/tasks/{task['_id']}").status_code == 204


def test_user_overwrite_of_pending_tasks_is_literal(client) -> None:
    a = create_user(client, name="A", email="a@example.com")
    task = create_task(client, name="Assigned", assignedUser=a["_id"])

    r = client.put(f"/api/users/{a['_id']}", json={"name": "A", "email": "a@example.com", "pendingTasks": []})
    assert r.status_code == 200

    assert get_user(client, a["_id"])["pendingTasks"] == []
    assert client.get(f"/api/tasks/{task['_id']}").json()["data"]["assignedUser"] == a["_id"]


def test_get_task_by_id_with_select(client) -> None:
    task = create_task(client, name="Pick", description="hidden")

    r = client.get(
        f"/api/tasks/{task['_id']}",
        params={"select": '{"name": 1, "_id": 0}', "where": "not json", "limit": "-5"},
    )

    assert r.status_code == 200
    assert r.json()["data"] == {"name": "Pick"}


def test_get_task_by_id_bad_select(client) -> None:
    task = create_task(client, name="Pick")

    r = client.get(f"/api/tasks/{task['_id']}", params={"select": "{name"})

    assert r.status_code == 400


def _fail_user_reads(monkeypatch) -> None:
    from sqlalchemy.exc import OperationalError
    from sqlalchemy.ext.asyncio import AsyncSession

    from taskhub.models.user import User

    original_get = AsyncSession.get

    async def failing_get(self, entity, ident, **kwargs):
        if entity is User:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return await original_get(self, entity, ident, **kwargs)

    monkeypatch.setattr(AsyncSession, "get", failing_get)


def test_secondary_failure_does_not_fail_create(client, repairs, monkeypatch) -> None:
    a = create_user(client, name="A", email="a@example.com")

    _fail_user_reads(monkeypatch)
    r = client.post("/api/tasks", json={"name": "Still created", "deadline": "2024-01-01", "assignedUser": a["_id"]})
    monkeypatch.undo()

    assert r.status_code == 201
    assert repairs.requested == [a["_id"]]
    assert get_user(client, a["_id"])["pendingTasks"] == []
    assert client.get(f"/api/tasks/{r.json()['data']['_id']}").status_code == 200


def test_secondary_failure_during_update_still_updates_task(client, repairs, monkeypatch) -> None:
    a = create_user(client, name="A", email="a@example.com")
    b = create_user(client, name="B", email="b@example.com")
    task = create_task(client, name="Move me", assignedUser=a["_id"])

    _fail_user_reads(monkeypatch)
    r = client.put(
        f"/api/tasks/{task['_id']}",
        json={"name": "Moved", "deadline": "2024-01-02", "assignedUser": b["_id"]},
    )
    monkeypatch.undo()

    assert r.status_code == 200
    assert r.json()["data"]["name"] == "Moved"
    assert r.json()["data"]["assignedUser"] == b["_id"]
    assert repairs.requested == [a["_id"], b["_id"]]

    stored = client.get(f"/api/tasks/{task['_id']}").json()["data"]
    assert stored["assignedUser"] == b["_id"]
    # left for the repair queue
    assert get_user(client, a["_id"])["pendingTasks"] == [task["_id"]]
    assert get_user(client, b["_id"])["pendingTasks"] == []


def test_secondary_failure_during_delete_still_deletes(client, repairs, monkeypatch) -> None:
    a = create_user(client, name="A", email="a@example.com")
    task = create_task(client, name="Drop", assignedUser=a["_id"])

    _fail_user_reads(monkeypatch)
    r = client.delete(f"/api/tasks/{task['_id']}")
    monkeypatch.undo()

    assert r.status_code == 204
    assert repairs.requested == [a["_id"]]
    assert client.get(f"/api/tasks/{task['_id']}").status_code == 404
    assert get_user(client, a["_id"])["pendingTasks"] == [task["_id"]]


def test_store_failure_is_server_error(client, monkeypatch) -> None:
    from sqlalchemy.exc import OperationalError

    from taskhub.routers import tasks as tasks_router

    async def broken_query(session, plan):
        raise OperationalError("SELECT", {}, Exception("unable to open database file"))

    monkeypatch.setattr(tasks_router, "run_query", broken_query)
    r = client.get("/api/tasks")

    assert r.status_code == 500
    assert r.json() == {"message": "Server error", "data": {}}


@pytest.mark.asyncio
async def test_concurrent_assignments_to_one_user(settings, repairs) -> None:
    app = create_app(settings, repairs=repairs)
    await app.state.db.connect()
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
            r = await ac.post("/api/users", json={"name": "Busy", "email": "busy@x.com"})
            user_id = r.json()["data"]["_id"]

            created = await asyncio.gather(
                *(
                    ac.post("/api/tasks", json={"name": f"t{i}", "deadline": "2024-01-01", "assignedUser": user_id})
                    for i in range(20)
                )
            )
            assert all(r.status_code == 201 for r in created)
            task_ids = [r.json()["data"]["_id"] for r in created]

            pending = (await ac.get(f"/api/users/{user_id}")).json()["data"]["pendingTasks"]
            assert sorted(pending) == sorted(task_ids)

            deleted = await asyncio.gather(*(ac.delete(f"/api/tasks/{t}") for t in task_ids[:10]))
            assert all(r.status_code == 204 for r in deleted)

            pending = (await ac.get(f"/api/users/{user_id}")).json()["data"]["pendingTasks"]
            assert sorted(pending) == sorted(task_ids[10:])
    finally:
        await app.state.db.dispose()

    gc.collect()
    assert len(app.state.coordinator._locks) == 0
    assert repairs.requested == []
