from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

import services
from auth import COOKIE_NAME, issue_token
from main import app


def _category(api, headers, type: str, name: str) -> str:
    response = api.get(f"/api/categories/{type}", headers=headers)
    return next(c["id"] for c in response.json() if c["name"] == name)


def test_health_reports_database(api) -> None:
    response = api.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["database"] == "connected"


def test_token_issue_sets_cookie_and_derives_name(api) -> None:
    response = api.post(
        "/api/auth/token",
        json={
            "user": {
                "id": "u-1",
                "email": "hanako@example.com",
                "user_metadata": {"full_name": "Hanako Yamada"},
            }
        },
    )

    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Hanako Yamada"
    assert response.json()["token"]
    assert COOKIE_NAME in response.cookies
    assert "httponly" in response.headers["set-cookie"].lower()

    again = api.post(
        "/api/auth/token",
        json={"user": {"id": "u-1", "email": "other@example.com", "name": "Other"}},
    )
    assert again.json()["user"]["name"] == "Hanako Yamada"


def test_name_falls_back_to_email_local_part(api) -> None:
    response = api.post(
        "/api/auth/token", json={"user": {"id": "u-2", "email": "taro@example.com"}}
    )

    assert response.json()["user"]["name"] == "taro"


def test_token_issue_fails_without_secret(api, monkeypatch) -> None:
    from config import get_settings

    monkeypatch.delenv("WADAKE_JWT_SECRET")
    get_settings.cache_clear()

    response = api.post(
        "/api/auth/token", json={"user": {"id": "u-1", "email": "a@example.com"}}
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Server configuration error"}


def test_missing_invalid_and_expired_tokens(api, login) -> None:
    login("alice")

    missing = api.get("/api/incomes")
    assert missing.status_code == 401
    assert missing.json() == {"error": "Access token is required"}

    invalid = api.get("/api/incomes", headers={"Authorization": "Bearer not-a-jwt"})
    assert invalid.status_code == 403
    assert invalid.json() == {"error": "Invalid token"}

    stale = issue_token(
        "alice",
        "alice@example.com",
        "Alice",
        now=datetime.now(timezone.utc) - timedelta(days=2),
    )
    expired = api.get("/api/incomes", headers={"Authorization": f"Bearer {stale}"})
    assert expired.status_code == 401
    assert expired.json() == {"error": "Token has expired"}


def test_cookie_session_and_logout(api) -> None:
    api.post("/api/auth/token", json={"user": {"id": "u-1", "email": "a@example.com"}})

    me = api.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["authenticated"] is True
    assert me.json()["user"]["id"] == "u-1"

    logout = api.post("/api/auth/logout")
    assert logout.json() == {"message": "Logged out"}
    assert COOKIE_NAME in logout.headers["set-cookie"]
    api.cookies.clear()

    session = api.get("/api/auth/session")
    assert session.status_code == 200
    assert session.json()["authenticated"] is False


def test_categories_are_seeded(api, login) -> None:
    headers = login("alice")

    expense = api.get("/api/categories/expense", headers=headers).json()
    income = api.get("/api/categories", params={"type": "income"}, headers=headers).json()

    assert {c["name"] for c in expense} == {
        "食費",
        "光熱費",
        "交通費",
        "娯楽費",
        "日用品",
        "衣類",
        "医療費",
        "その他",
    }
    assert {c["name"] for c in income} == {"給与", "ボーナス", "副業", "その他"}
    assert all(c["type"] == "income" for c in income)


def test_income_crud(api, login) -> None:
    headers = login("alice")
    salary = _category(api, headers, "income", "給与")

    created = api.post(
        "/api/incomes",
        json={"categoryId": salary, "amount": 250000, "date": "2025-04-25", "memo": "April"},
        headers=headers,
    )
    assert created.status_code == 201
    income = created.json()
    assert income["category"]["name"] == "給与"
    assert income["date"] == "2025-04-25T00:00:00"
    assert income["groupId"] is None

    updated = api.put(
        f"/api/incomes/{income['id']}",
        json={"categoryId": salary, "amount": 260000, "date": "2025-04-25", "version": 1},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.json()["version"] == 2

    conflict = api.put(
        f"/api/incomes/{income['id']}",
        json={"categoryId": salary, "amount": 1, "date": "2025-04-25", "version": 1},
        headers=headers,
    )
    assert conflict.status_code == 409

    listed = api.get("/api/incomes", headers=headers).json()
    assert [row["amount"] for row in listed] == [260000]

    deleted = api.delete(f"/api/incomes/{income['id']}", headers=headers)
    assert deleted.json() == {"message": "Income deleted"}
    assert api.get("/api/incomes", headers=headers).json() == []

    gone = api.delete(f"/api/incomes/{income['id']}", headers=headers)
    assert gone.status_code == 404
    assert gone.json() == {"error": "Income not found"}


def test_bad_entry_input_is_400(api, login) -> None:
    headers = login("alice")
    food = _category(api, headers, "expense", "食費")

    zero = api.post(
        "/api/expenses",
        json={"categoryId": food, "amount": 0, "date": "2025-04-01"},
        headers=headers,
    )
    assert zero.status_code == 400
    assert zero.json() == {"error": "Amount must be greater than zero"}

    missing = api.post("/api/expenses", json={"amount": 100}, headers=headers)
    assert missing.status_code == 400
    assert missing.json()["error"] == "Missing or invalid fields"

    blank_purpose = api.post(
        "/api/budgets",
        json={"amount": 100, "purpose": " ", "date": "2025-04-01"},
        headers=headers,
    )
    assert blank_purpose.status_code == 400


def test_group_flow(api, login) -> None:
    alice = login("alice")
    bob = login("bob")
    carol = login("carol")

    created = api.post("/api/groups", json={"name": "Home"}, headers=alice)
    assert created.status_code == 201
    group = created.json()
    assert [(m["userId"], m["role"]) for m in group["users"]] == [("alice", "admin")]

    invited = api.post(
        f"/api/groups/{group['id']}/invite", json={"userId": "bob"}, headers=alice
    )
    assert invited.status_code == 201
    assert invited.json()["role"] == "member"

    members = api.get(f"/api/groups/{group['id']}/members", headers=bob).json()
    assert sorted(m["user"]["id"] for m in members) == ["alice", "bob"]

    groups = api.get("/api/groups/user/bob", headers=bob).json()
    assert [g["id"] for g in groups] == [group["id"]]
    assert api.get("/api/groups/user/bob", headers=alice).status_code == 403

    food = _category(api, bob, "expense", "食費")
    expense = api.post(
        f"/api/groups/{group['id']}/expenses",
        json={"categoryId": food, "amount": 4200, "date": "2025-04-10"},
        headers=bob,
    )
    assert expense.status_code == 201
    shared = api.get(f"/api/groups/{group['id']}/expenses", headers=alice).json()
    assert [(row["amount"], row["user"]["id"]) for row in shared] == [(4200, "bob")]
    assert api.get("/api/expenses", headers=bob).json() == []

    denied = api.get(f"/api/groups/{group['id']}/expenses", headers=carol)
    assert denied.status_code == 403
    assert denied.json() == {"error": "You do not have access to this group"}

    summary = api.post(
        f"/api/summary/groups/{group['id']}/monthly",
        params={"year": 2025, "month": 4},
        headers=alice,
    ).json()
    assert summary["groupId"] == group["id"]
    assert summary["summary"]["totalExpense"] == 4200


def test_monthly_summary_and_trend(api, login) -> None:
    headers = login("alice")
    salary = _category(api, headers, "income", "給与")
    food = _category(api, headers, "expense", "食費")
    api.post(
        "/api/incomes",
        json={"categoryId": salary, "amount": 5000, "date": "2025-04-02"},
        headers=headers,
    )
    api.post(
        "/api/expenses",
        json={"categoryId": food, "amount": 2000, "date": "2025-04-03"},
        headers=headers,
    )

    monthly = api.get(
        "/api/summary/monthly", params={"year": 2025, "month": 4}, headers=headers
    )
    assert monthly.status_code == 200
    summary = monthly.json()["summary"]
    assert summary["netIncome"] == 3000
    assert summary["expenseRatio"] == 40

    bad = api.get(
        "/api/summary/monthly", params={"year": 2025, "month": 13}, headers=headers
    )
    assert bad.status_code == 400

    trend = api.get("/api/summary/trend", headers=headers).json()
    assert len(trend["trends"]) == 12


def test_unknown_route_uses_error_envelope(api) -> None:
    response = api.get("/api/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}


def test_unexpected_errors_are_opaque(api, login, monkeypatch) -> None:
    headers = login("alice")

    def boom(self, type=None):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(services.CategoryService, "list_all", boom)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/api/categories", headers=headers)

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_update_returns_the_new_category(api, login) -> None:
    headers = login("alice")
    food = _category(api, headers, "expense", "食費")
    transport = _category(api, headers, "expense", "交通費")
    expense = api.post(
        "/api/expenses",
        json={"categoryId": food, "amount": 600, "date": "2025-04-01"},
        headers=headers,
    ).json()

    updated = api.put(
        f"/api/expenses/{expense['id']}",
        json={"categoryId": transport, "amount": 600, "date": "2025-04-01"},
        headers=headers,
    ).json()

    assert updated["categoryId"] == transport
    assert updated["category"]["id"] == transport
    assert updated["category"]["name"] == "交通費"


def test_non_positive_update_leaves_entry_unchanged(api, login) -> None:
    headers = login("alice")
    salary = _category(api, headers, "income", "給与")
    income = api.post(
        "/api/incomes",
        json={"categoryId": salary, "amount": 5000, "date": "2025-04-01"},
        headers=headers,
    ).json()

    for amount in (0, -1):
        response = api.put(
            f"/api/incomes/{income['id']}",
            json={"categoryId": salary, "amount": amount, "date": "2025-04-01"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Amount must be greater than zero"}

    listed = api.get("/api/incomes", headers=headers).json()
    assert [(row["amount"], row["version"]) for row in listed] == [(5000, 1)]


def test_out_of_range_summary_periods_are_400(api, login) -> None:
    headers = login("alice")

    for path, params in (
        ("/api/summary/monthly", {"year": 2025, "month": 0}),
        ("/api/summary/monthly", {"year": 10000, "month": 1}),
        ("/api/summary/yearly", {"year": 10000}),
        ("/api/summary/yearly", {"year": 0}),
    ):
        response = api.get(path, params=params, headers=headers)
        assert response.status_code == 400, (path, params)
        assert "must be between" in response.json()["error"]
