import pytest

DATA_URL = "/api/v1/database/tables/users/data"


def test_data_miss_then_hit_with_identical_rows(client):
    params = {"page": 2, "limit": 50, "sortBy": "id", "sortOrder": "asc"}

    first = client.get(DATA_URL, params=params)
    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    body = first.json()
    assert body["success"] is True
    assert body["cached"] is False
    assert body["pagination"] == {"page": 2, "limit": 50, "totalCount": 120, "totalPages": 3}
    assert [row["id"] for row in body["data"]] == list(range(51, 101))

    second = client.get(DATA_URL, params=params)
    assert second.headers["X-Cache"] == "HIT"
    assert second.json()["cached"] is True
    assert second.json()["data"] == body["data"]
    assert second.json()["pagination"] == body["pagination"]


def test_distinct_query_shapes_do_not_share_entries(client):
    client.get(DATA_URL, params={"page": 1, "limit": 10})

    other = client.get(DATA_URL, params={"page": 1, "limit": 10, "sortOrder": "desc"})

    assert other.headers["X-Cache"] == "MISS"
    assert other.json()["data"][0]["id"] == 120


def test_search_bypasses_cache(client):
    for _ in range(2):
        response = client.get(DATA_URL, params={"search": "Person 11"})
        assert response.headers["X-Cache"] == "BYPASS"
        assert response.json()["cached"] is False

    body = response.json()
    assert body["pagination"]["totalCount"] == 11
    assert {row["name"] for row in body["data"]} == {"Person 11", *(f"Person {i}" for i in range(110, 120))}


def test_list_tables_hides_internal_tables(client):
    first = client.get("/api/v1/database/tables")
    names = [table["name"] for table in first.json()["tables"]]

    assert first.headers["X-Cache"] == "MISS"
    assert "users" in names
    assert "meetings" in names
    assert not [name for name in names if name.startswith("sqlite_")]

    assert client.get("/api/v1/database/tables").headers["X-Cache"] == "HIT"


def test_schema_is_cached(client):
    first = client.get("/api/v1/database/tables/users/schema")
    body = first.json()

    assert first.headers["X-Cache"] == "MISS"
    assert body["tableName"] == "users"
    assert [column["name"] for column in body["columns"]] == ["id", "name", "email", "age"]

    second = client.get("/api/v1/database/tables/users/schema")
    assert second.headers["X-Cache"] == "HIT"
    assert second.json()["columns"] == body["columns"]


def test_unknown_table_schema_is_not_cached(client):
    for _ in range(2):
        response = client.get("/api/v1/database/tables/ghost/schema")
        assert response.status_code == 200
        assert response.json()["columns"] == []
        assert response.headers["X-Cache"] == "MISS"


def test_column_values(client):
    first = client.get("/api/v1/database/tables/users/column/age/values")
    values = first.json()["values"]

    assert first.headers["X-Cache"] == "MISS"
    assert sorted(v["value"] for v in values) == [20, 21, 22]
    assert all(v["count"] == 40 for v in values)

    assert client.get("/api/v1/database/tables/users/column/age/values").headers["X-Cache"] == "HIT"


@pytest.mark.parametrize("url,params,error", [
    ("/api/v1/database/tables/1users/data", {}, "Invalid table name"),
    ("/api/v1/database/tables/user-s/schema", {}, "Invalid table name"),
    (DATA_URL, {"sortBy": "id;drop"}, "Invalid sort column"),
    (DATA_URL, {"sortOrder": "sideways"}, "Invalid sort order"),
    ("/api/v1/database/tables/users/column/a%20b/values", {}, "Invalid column name"),
])
def test_identifier_validation(client, url, params, error):
    response = client.get(url, params=params)

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": error}


def test_bad_pagination_is_400(client):
    response = client.get(DATA_URL, params={"page": 0})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_store_error_is_500(client):
    response = client.get("/api/v1/database/tables/ghost/data")

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Database query failed"
    assert "ghost" in body["details"]


# ============================================================================
# Row Writes
# ============================================================================

def test_create_row(client):
    response = client.post(DATA_URL, json={"name": "New Person", "email": "new@example.com", "age": 30})

    assert response.status_code == 200
    assert response.json()["data"] == {"id": 121, "name": "New Person", "email": "new@example.com", "age": 30}


def test_create_row_rejects_unknown_and_empty_bodies(client):
    unknown = client.post(DATA_URL, json={"nickname": "x"})
    assert unknown.status_code == 400
    assert unknown.json()["error"] == "Unknown column: nickname"

    bad_name = client.post(DATA_URL, json={"na me": "x"})
    assert bad_name.status_code == 400
    assert bad_name.json()["error"] == "Invalid column name"

    empty = client.post(DATA_URL, json={})
    assert empty.status_code == 400
    assert empty.json()["error"] == "No fields provided"


def test_update_row(client):
    response = client.put(f"{DATA_URL}/1", json={"id": 999, "name": "Changed"})

    assert response.status_code == 200
    assert response.json()["data"]["id"] == 1
    assert response.json()["data"]["name"] == "Changed"


def test_update_missing_row_is_404(client):
    response = client.put(f"{DATA_URL}/999", json={"name": "Nobody"})

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Row not found"}


def test_delete_row(client):
    response = client.delete(f"{DATA_URL}/2")

    assert response.status_code == 200
    assert response.json()["data"]["id"] == 2
    assert client.delete(f"{DATA_URL}/2").status_code == 404

    listing = client.get(DATA_URL, params={"limit": 5})
    assert listing.json()["pagination"]["totalCount"] == 119


def test_writes_invalidate_tracked_entries(client, settings):
    settings.cache_key_index_enabled = True
    params = {"page": 1, "limit": 5}

    client.get(DATA_URL, params=params)
    assert client.get(DATA_URL, params=params).headers["X-Cache"] == "HIT"

    client.put(f"{DATA_URL}/1", json={"name": "Renamed"})

    after = client.get(DATA_URL, params=params)
    assert after.headers["X-Cache"] == "MISS"
    assert after.json()["data"][0]["name"] == "Renamed"


def test_admin_invalidate(client):
    client.get("/api/v1/database/tables/users/schema")

    response = client.post("/api/v1/admin/cache/invalidate/users")

    assert response.status_code == 200
    assert response.json()["keys"] == ["schema:users"]
    assert client.get("/api/v1/database/tables/users/schema").headers["X-Cache"] == "MISS"


def test_admin_invalidate_validates_table(client):
    assert client.post("/api/v1/admin/cache/invalidate/bad-name").status_code == 400


# ============================================================================
# App-level routes
# ============================================================================

def test_unknown_route_is_404(client):
    response = client.get("/api/v1/nothing-here")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Not found"
    assert "/health" in body["availableEndpoints"]


def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["checks"] == {"database": True, "kv": True}
    assert body["kv_backend"] == "memory"
    assert body["features"]["caching"] is True
    assert body["features"]["rate_limiting"] is True
