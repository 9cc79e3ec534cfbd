from starlette.requests import Request

from middleware.rate_limit import (
    DEFAULT_RULES,
    RateLimitRule,
    endpoint_rate_limit,
    get_client_identifier,
)
from services.rate_limiter import RATE_LIMIT_PRESETS


def make_request(headers=None, path="/"):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": path, "headers": raw})


def matching_rule(path):
    return next((rule for rule in DEFAULT_RULES if rule.matches(path)), None)


def test_identifier_prefers_cf_connecting_ip():
    request = make_request({"CF-Connecting-IP": "1.1.1.1", "X-Forwarded-For": "2.2.2.2"})
    assert get_client_identifier(request) == "1.1.1.1"


def test_identifier_uses_first_forwarded_entry():
    request = make_request({"X-Forwarded-For": "10.0.0.1, 10.0.0.2"})
    assert get_client_identifier(request) == "10.0.0.1"


def test_identifier_defaults_to_unknown():
    assert get_client_identifier(make_request()) == "unknown"


def test_endpoint_rate_limit_options():
    options = endpoint_rate_limit("database-data", RATE_LIMIT_PRESETS["standard"])

    assert options.config.key_prefix == "endpoint:database-data"
    assert options.config.max == 60
    assert options.key_generator(make_request({"CF-Connecting-IP": "1.1.1.1"})) == "1.1.1.1:database-data"
    # Presets stay untouched
    assert RATE_LIMIT_PRESETS["standard"].key_prefix is None


def test_rule_patterns():
    assert matching_rule("/api/v1/database/tables/users/data").pattern == "/api/v1/database/tables/*/data"
    assert matching_rule("/api/v1/database/tables/users/column/age/values").options.config.max == 30
    assert matching_rule("/api/v1/admin/cache/invalidate/users").options.config.key_prefix == "admin"
    assert matching_rule("/api/v1/insights/process").options.config.max == 10
    assert matching_rule("/api/v1/database/tables") is None
    assert matching_rule("/api/v1/database/tables/users/schema") is None
    assert matching_rule("/health") is None


def test_single_segment_wildcard():
    rule = RateLimitRule("/a/*/b", endpoint_rate_limit("x", RATE_LIMIT_PRESETS["standard"]))
    assert rule.matches("/a/one/b")
    assert not rule.matches("/a/one/two/b")
    assert not rule.matches("/a//b")


def test_headers_on_matched_route(client):
    response = client.get("/api/v1/database/tables/users/data")

    assert response.status_code == 200
    assert response.headers["X-RateLimit-Limit"] == "60"
    assert response.headers["X-RateLimit-Remaining"] == "59"
    assert int(response.headers["X-RateLimit-Reset"]) > 1_000_000_000_000

    second = client.get("/api/v1/database/tables/users/data")
    assert second.headers["X-RateLimit-Remaining"] == "58"


def test_callers_are_counted_separately(client):
    client.get("/api/v1/database/tables/users/data", headers={"CF-Connecting-IP": "1.1.1.1"})
    response = client.get("/api/v1/database/tables/users/data", headers={"CF-Connecting-IP": "2.2.2.2"})

    assert response.headers["X-RateLimit-Remaining"] == "59"


def test_unmatched_route_has_no_headers(client):
    response = client.get("/api/v1/database/tables")

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers


def test_rejects_with_429_after_max(client):
    for _ in range(10):
        assert client.delete("/api/v1/admin/rate-limit/someone").status_code == 200

    response = client.delete("/api/v1/admin/rate-limit/someone")

    assert response.status_code == 429
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Too many requests"
    assert body["retryAfter"] >= 1
    assert response.headers["Retry-After"] == str(body["retryAfter"])
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_admin_reset_reopens_window(client):
    headers = {"CF-Connecting-IP": "3.3.3.3"}
    client.get("/api/v1/database/tables/users/data", headers=headers)
    assert client.get("/api/v1/database/tables/users/data",
                      headers=headers).headers["X-RateLimit-Remaining"] == "58"

    response = client.delete(
        "/api/v1/admin/rate-limit/3.3.3.3:database-data",
        params={"keyPrefix": "endpoint:database-data"},
    )
    assert response.status_code == 200
    assert response.json()["deleted"] is True

    reopened = client.get("/api/v1/database/tables/users/data", headers=headers)
    assert reopened.headers["X-RateLimit-Remaining"] == "59"


def test_disabled_rate_limiting(client, settings):
    settings.rate_limit_enabled = False

    response = client.get("/api/v1/database/tables/users/data")

    assert response.status_code == 200
    assert "X-RateLimit-Limit" not in response.headers
