"""End-to-end flows through the HTTP API only."""


def test_signup_verify_login_and_track_budget(client, mailer):
    # sign up and follow the emailed link
    res = client.post(
        "/api/auth/signup",
        json={"name": "Jane", "surname": "Doe", "email": "jane@example.com", "password": "Budget2025!"},
    )
    assert res.status_code == 201
    token = mailer.last_token("jane@example.com")
    assert client.get("/api/auth/verify", params={"token": token}).status_code == 200

    # the login cookie is all the client needs from here on
    assert client.post(
        "/api/auth/login", json={"email": "jane@example.com", "password": "Budget2025!"}
    ).status_code == 200

    categories = client.get("/api/categories").json()
    salary = next(c for c in categories if c["name"] == "Salary")
    housing = next(c for c in categories if c["name"] == "Housing")

    for payload in (
        {"amount": 3000, "type": "INCOME", "category_id": salary["id"], "date": "2025-01-01"},
        {"amount": 1200, "type": "EXPENSE", "category_id": housing["id"], "date": "2025-01-03"},
        {"amount": 300, "type": "EXPENSE", "category_id": housing["id"], "date": "2025-02-03"},
    ):
        assert client.post("/api/transactions", json=payload).status_code == 201

    summary = client.get("/api/summary").json()
    assert summary == {"income": 3000.0, "expense": 1500.0, "balance": 1500.0}

    january = client.get(
        "/api/summary", params={"startDate": "2025-01-01", "endDate": "2025-01-31"}
    ).json()
    assert january == {"income": 3000.0, "expense": 1200.0, "balance": 1800.0}

    breakdown = client.get("/api/expenses/by-category").json()
    assert breakdown == [{
        "category_id": housing["id"],
        "category_name": "Housing",
        "category_icon": "home",
        "total": 1500.0,
        "percentage": 100.0,
    }]

    # default categories are shared, so they cannot be deleted by a user
    assert client.delete(f"/api/categories/{housing['id']}").status_code == 403

    assert client.post("/api/auth/logout").status_code == 200
    client.cookies.clear()
    assert client.get("/api/summary").status_code == 401


def test_two_users_have_separate_books(client, auth_helpers):
    alice = auth_helpers["auth_headers"](auth_helpers["get_token"]("alice@example.com"))
    bob = auth_helpers["auth_headers"](auth_helpers["get_token"]("bob@example.com"))

    food = next(
        c for c in client.get("/api/categories", headers=alice).json()
        if c["name"] == "Food & Dining"
    )
    res = client.post(
        "/api/transactions",
        json={"amount": 80, "type": "EXPENSE", "category_id": food["id"]},
        headers=alice,
    )
    assert res.status_code == 201
    tx_id = res.json()["id"]

    assert client.get("/api/summary", headers=alice).json()["expense"] == 80.0
    assert client.get("/api/summary", headers=bob).json()["expense"] == 0.0
    assert client.get(f"/api/transactions/{tx_id}", headers=bob).status_code == 403
