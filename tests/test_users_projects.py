import pytest
import pytest_asyncio

from sre_demo.seed import seed_demo_data


@pytest_asyncio.fixture
async def demo_data(db_session):
    return await seed_demo_data(db_session)


async def find(client, path, key, field, value):
    items = (await client.get(path)).json()[key]
    return next(item for item in items if item[field] == value)


@pytest.mark.asyncio
async def test_seed_counts(demo_data):
    assert demo_data == {
        "users": 5,
        "projects": 4,
        "memberships": 7,
        "tags": 10,
        "todos": 7,
        "comments": 3,
        "attachments": 2,
    }


@pytest.mark.asyncio
async def test_list_users(client, demo_data):
    response = await client.get("/api/users")

    body = response.json()
    assert body["count"] == 5
    alice = next(u for u in body["users"] if u["name"] == "Alice Johnson")
    assert alice["todo_count"] == 2
    assert alice["comment_count"] == 1


@pytest.mark.asyncio
async def test_filter_users(client, demo_data):
    admins = (await client.get("/api/users", params={"role": "ADMIN"})).json()
    search = (await client.get("/api/users", params={"search": "SMITH"})).json()

    assert [u["name"] for u in admins["users"]] == ["Alice Johnson"]
    assert [u["name"] for u in search["users"]] == ["Bob Smith"]


@pytest.mark.asyncio
async def test_get_user(client, demo_data):
    alice = await find(client, "/api/users", "users", "name", "Alice Johnson")

    response = await client.get(f"/api/users/{alice['id']}")

    body = response.json()
    assert body["email"] == "alice.johnson@company.com"
    assert len(body["todos"]) == 2
    assert {p["role"] for p in body["projects"]} == {"OWNER"}
    assert {p["project"]["name"] for p in body["projects"]} == {
        "SRE Platform Migration",
        "Infrastructure Automation",
    }
    assert all(todo["project"] is not None for todo in body["todos"])


@pytest.mark.asyncio
async def test_get_missing_user(client, demo_data):
    response = await client.get("/api/users/999")

    assert response.status_code == 404
    assert response.json()["error"] == "User not found"


@pytest.mark.asyncio
async def test_user_stats(client, demo_data):
    alice = await find(client, "/api/users", "users", "name", "Alice Johnson")
    bob = await find(client, "/api/users", "users", "name", "Bob Smith")

    alice_stats = (await client.get(f"/api/users/{alice['id']}/stats")).json()
    bob_stats = (await client.get(f"/api/users/{bob['id']}/stats")).json()

    assert alice_stats == {
        "total_todos": 2,
        "completed_todos": 1,
        "active_todos": 1,
        "urgent_todos": 0,
        "todos_this_week": 2,
        "completion_rate": 50.0,
    }
    assert bob_stats["urgent_todos"] == 1
    assert bob_stats["completion_rate"] == 0.0


@pytest.mark.asyncio
async def test_list_projects(client, demo_data):
    everything = (await client.get("/api/projects")).json()
    active = (await client.get("/api/projects", params={"status": "ACTIVE"})).json()
    search = (await client.get("/api/projects", params={"search": "gateway"})).json()

    assert everything["count"] == 4
    assert active["count"] == 2
    assert [p["name"] for p in search["projects"]] == ["API Gateway Improvement"]
    migration = next(p for p in everything["projects"] if p["name"] == "SRE Platform Migration")
    assert migration["todo_count"] == 2
    assert migration["member_count"] == 3
    assert len(migration["members"]) == 3


@pytest.mark.asyncio
async def test_get_project(client, demo_data):
    gateway = await find(client, "/api/projects", "projects", "name", "API Gateway Improvement")

    body = (await client.get(f"/api/projects/{gateway['id']}")).json()

    assert len(body["todos"]) == 2
    leak = next(t for t in body["todos"] if t["title"] == "Fix memory leak in API Gateway")
    assert leak["assignee"]["name"] == "Bob Smith"
    assert leak["comment_count"] == 2


@pytest.mark.asyncio
async def test_project_stats(client, demo_data):
    gateway = await find(client, "/api/projects", "projects", "name", "API Gateway Improvement")

    stats = (await client.get(f"/api/projects/{gateway['id']}/stats")).json()

    assert stats["total_todos"] == 2
    assert stats["completion_rate"] == 0.0
    assert stats["priority_breakdown"] == {"LOW": 0, "MEDIUM": 0, "HIGH": 1, "URGENT": 1}


@pytest.mark.asyncio
async def test_get_missing_project(client):
    response = await client.get("/api/projects/999")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_project_defaults(client):
    response = await client.post("/api/projects", json={"name": "  Observability  "})

    body = response.json()
    assert response.status_code == 201
    assert body["name"] == "Observability"
    assert body["color"] == "#3B82F6"
    assert body["status"] == "PLANNING"
    assert body["todo_count"] == 0
    assert body["members"] == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"name": "   "},
        {"name": "Bad color", "color": "blue"},
        {"name": "Bad status", "status": "DONE"},
    ],
)
async def test_create_project_validation(client, payload):
    response = await client.post("/api/projects", json=payload)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_update_project(client):
    created = (await client.post("/api/projects", json={"name": "Observability"})).json()

    response = await client.put(
        f"/api/projects/{created['id']}", json={"status": "ACTIVE", "color": "#10b981"}
    )

    assert response.json()["status"] == "ACTIVE"
    assert response.json()["color"] == "#10b981"
    assert response.json()["name"] == "Observability"


@pytest.mark.asyncio
async def test_update_project_validation(client):
    created = (await client.post("/api/projects", json={"name": "Observability"})).json()

    blank = await client.put(f"/api/projects/{created['id']}", json={"name": ""})
    null_color = await client.put(f"/api/projects/{created['id']}", json={"color": None})
    missing = await client.put("/api/projects/999", json={"name": "Ghost"})

    assert blank.status_code == 400
    assert null_color.status_code == 400
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_search_treats_wildcards_literally(client, demo_data):
    users = (await client.get("/api/users", params={"search": "%"})).json()
    underscore = (await client.get("/api/users", params={"search": "_"})).json()
    projects = (await client.get("/api/projects", params={"search": "%"})).json()

    assert users["count"] == 0
    assert underscore["count"] == 0
    assert projects["count"] == 0
