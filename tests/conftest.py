"""
Shared fixtures: the FastAPI app against an in-memory Motor database, with
the authenticated user swapped per test through dependency overrides.
"""

import os

os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "sire_ops_test")

import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from server import app
from database.mongodb import get_database
from services.auth_deps import get_current_user
from models.user import User, Role


def make_user(user_id: str, *roles: Role) -> User:
    return User(
        id=user_id,
        email=f"{user_id}@sireops.io",
        name=user_id.replace("-", " ").title(),
        roles=list(roles),
        created_at=datetime.utcnow()
    )


class ApiSession:
    """TestClient plus the user the requests are made as"""

    admin = make_user("admin-user", Role.SUPER_ADMIN)
    finance = make_user("finance-user", Role.FINANCE)
    manager = make_user("manager-user", Role.PROJECT_MANAGER)
    customer = make_user("customer-user", Role.CLIENT)
    outsider = make_user("outsider-user", Role.CLIENT)

    def __init__(self, http: TestClient, db):
        self.http = http
        self.db = db
        self.user = None
        self._default_customer = None

    def login(self, user: User):
        self.user = user
        app.dependency_overrides[get_current_user] = lambda: user
        return self

    def logout(self):
        self.user = None
        app.dependency_overrides.pop(get_current_user, None)

    @contextmanager
    def acting_as(self, user: User):
        previous = self.user
        self.login(user)
        try:
            yield self
        finally:
            if previous:
                self.login(previous)
            else:
                self.logout()

    def get(self, url, **kwargs):
        return self.http.get(url, **kwargs)

    def post(self, url, **kwargs):
        return self.http.post(url, **kwargs)

    def put(self, url, **kwargs):
        return self.http.put(url, **kwargs)

    def patch(self, url, **kwargs):
        return self.http.patch(url, **kwargs)

    def delete(self, url, **kwargs):
        return self.http.delete(url, **kwargs)

    # Seed helpers, always run as super admin

    def _created(self, response, key):
        assert response.status_code == 201, response.text
        return response.json()["data"][key]

    def create_customer(self, user_id=None) -> dict:
        with self.acting_as(self.admin):
            return self._created(self.post("/api/clients", json={
                "first_name": "Jane",
                "last_name": "Doe",
                "email": f"jane-{uuid.uuid4().hex[:8]}@client.com",
                "company": "Doe Ltd",
                "user_id": user_id
            }), "client")

    def default_customer(self) -> dict:
        """The client record linked to the `customer` login"""
        if self._default_customer is None:
            self._default_customer = self.create_customer(user_id=self.customer.id)
        return self._default_customer

    def create_project(self, customer_id=None, assigned_to=None) -> dict:
        if customer_id is None:
            customer_id = self.default_customer()["_id"]
        with self.acting_as(self.admin):
            return self._created(self.post("/api/projects", json={
                "title": "Website Redesign",
                "description": "New marketing site",
                "client": customer_id,
                "assigned_to": assigned_to or []
            }), "project")

    def create_quotation(self, project_id=None, items=None, tax=10, discount=5, valid_until=None) -> dict:
        if project_id is None:
            project_id = self.create_project()["_id"]
        payload = {
            "project": project_id,
            "items": items or [{"description": "Design", "quantity": 2, "unit_price": 100}],
            "tax": tax,
            "discount": discount
        }
        if valid_until is not None:
            payload["valid_until"] = valid_until.isoformat()
        with self.acting_as(self.admin):
            return self._created(self.post("/api/quotations", json=payload), "quotation")

    def sent_quotation(self, **kwargs) -> dict:
        quotation = self.create_quotation(**kwargs)
        with self.acting_as(self.admin):
            response = self.post(f"/api/quotations/{quotation['_id']}/send")
        assert response.status_code == 200, response.text
        return response.json()["data"]["quotation"]

    def accepted_quotation(self, **kwargs) -> dict:
        quotation = self.sent_quotation(**kwargs)
        with self.acting_as(self.admin):
            response = self.patch(f"/api/quotations/{quotation['_id']}/accept")
        assert response.status_code == 200, response.text
        return response.json()["data"]["quotation"]

    def create_invoice(self, send=True, due_date=None, **kwargs) -> dict:
        """Invoice converted from an accepted quotation (total 205 by default)"""
        quotation = self.accepted_quotation(**kwargs)
        payload = {"quotation": quotation["_id"]}
        if due_date is not None:
            payload["due_date"] = due_date.isoformat()
        with self.acting_as(self.admin):
            invoice = self._created(self.post("/api/invoices", json=payload), "invoice")
            if send:
                response = self.post(f"/api/invoices/{invoice['_id']}/send")
                assert response.status_code == 200, response.text
                invoice = response.json()["data"]["invoice"]
        return invoice


@pytest.fixture
def db():
    """Fresh in-memory database per test"""
    return AsyncMongoMockClient()[f"sire_ops_test_{uuid.uuid4().hex[:8]}"]


@pytest.fixture
def api(db):
    app.dependency_overrides[get_database] = lambda: db
    session = ApiSession(TestClient(app), db)
    session.login(ApiSession.admin)
    yield session
    app.dependency_overrides.clear()


@pytest.fixture
def in_days():
    def shift(days: int) -> datetime:
        return datetime.utcnow() + timedelta(days=days)
    return shift


@pytest.fixture
def unguarded(api):
    """Same app and user as `api`, but unhandled errors come back as 500 responses"""
    return TestClient(app, raise_server_exceptions=False)
