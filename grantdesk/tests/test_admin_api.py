from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from grantdesk.api import create_app

T0 = 1_735_689_600


class StubAuthManager:
    USERS = {
        "Bearer admin-token": {"id": "admin-1", "email": "ops@example.com", "app_metadata": {"roles": ["admin"]}},
        "Bearer user-token": {"id": "user-1", "email": "ana@example.com", "app_metadata": {}},
    }

    def authenticate_request_token(self, authorization_header):
        return self.USERS.get(authorization_header)


class StubStripe:
    def __init__(self):
        self.customers = [{"id": "cus_a", "email": "ana@example.com", "name": "Ana", "created": T0}]
        self.subscriptions = {
            "cus_a": [
                {
                    "id": "sub_a",
                    "status": "active",
                    "price_id": "price_max",
                    "unit_amount": 10_000,
                    "current_period_start": T0,
                    "current_period_end": T0 + 2_678_400,
                    "created": T0,
                }
            ]
        }

    def list_customers_by_email(self, email, *, limit=10):
        return [customer for customer in self.customers if customer["email"] == email]

    def list_subscriptions(self, customer_id, *, status="all", limit=10):
        subs = self.subscriptions.get(customer_id, [])
        return [sub for sub in subs if status == "all" or sub["status"] == status][:limit]


@pytest.fixture
def client(memory_db):
    settings = SimpleNamespace(
        api_title="Grantdesk Billing API",
        api_version="test",
        api_cors_origins=(),
        app_base_url=None,
        supabase_configured=False,
        stripe_configured=False,
        stripe_standard_price_id="price_std",
        stripe_max_price_id="price_max",
        billing_discard_stale_events=True,
        admin_role="admin",
    )
    app = create_app(settings, database=memory_db, billing_service=StubStripe(), auth_manager=StubAuthManager())
    return TestClient(app)


ADMIN = {"Authorization": "Bearer admin-token"}
USER = {"Authorization": "Bearer user-token"}


@pytest.mark.parametrize(
    ("method", "path", "kwargs"),
    [
        ("get", "/v1/admin/billing/check", {"params": {"email": "ana@example.com"}}),
        ("post", "/v1/admin/billing/sync", {"json": {"email": "ana@example.com"}}),
        ("get", "/v1/admin/plans", {}),
        ("put", "/v1/admin/plans", {"json": {}}),
    ],
)
def test_admin_routes_reject_regular_users(client, method, path, kwargs) -> None:
    response = getattr(client, method)(path, headers=USER, **kwargs)

    assert response.status_code == 403


def test_role_from_user_roles_table_grants_access(client, memory_db) -> None:
    memory_db.roles["user-1"] = ["admin"]

    response = client.get("/v1/admin/plans", headers=USER)

    assert response.status_code == 200


def test_check_reports_drift(client) -> None:
    response = client.get("/v1/admin/billing/check", params={"email": "ana@example.com"}, headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert body["profile"]["subscription_tier"] == "free"
    assert body["stripe_customers_by_email"][0]["customer_id"] == "cus_a"
    assert body["diagnosis"][0].startswith("ISSUE: Stripe customer cus_a has active subscription")


def test_check_unknown_email_is_404(client) -> None:
    response = client.get("/v1/admin/billing/check", params={"email": "nobody@example.com"}, headers=ADMIN)

    assert response.status_code == 404


def test_sync_pulls_subscription_from_stripe(client, memory_db) -> None:
    response = client.post("/v1/admin/billing/sync", json={"email": "ana@example.com"}, headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["action"] == "synced"
    assert body["details"]["new_tier"] == "max"
    assert memory_db.profiles["user-1"]["stripe_subscription_id"] == "sub_a"


def test_sync_validates_email(client) -> None:
    response = client.post("/v1/admin/billing/sync", json={"email": "not-an-email"}, headers=ADMIN)

    assert response.status_code == 422


def test_plan_overrides_are_stored_and_merged(client, memory_db) -> None:
    response = client.put(
        "/v1/admin/plans",
        json={"standard": {"name": "Pro", "limits": {"max_projects": 10}}},
        headers=ADMIN,
    )

    assert response.status_code == 200
    assert memory_db.settings["plans"] == {"standard": {"name": "Pro", "limits": {"max_projects": 10}}}
    plans = {plan["id"]: plan for plan in client.get("/v1/admin/plans", headers=ADMIN).json()["plans"]}
    assert plans["standard"]["name"] == "Pro"
    assert plans["standard"]["limits"]["max_projects"] == 10
    assert plans["standard"]["limits"]["max_applications"] == 5
    # Public pricing keeps reading the static catalog.
    pricing = client.get("/v1/billing/pricing").json()
    assert {plan["id"]: plan["name"] for plan in pricing["plans"]}["standard"] == "Standard"


def test_plan_overrides_reject_unknown_plans(client, memory_db) -> None:
    response = client.put("/v1/admin/plans", json={"enterprise": {"name": "X"}}, headers=ADMIN)

    assert response.status_code == 400
    assert "plans" not in memory_db.settings
