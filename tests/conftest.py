"""
Shared pytest fixtures.

- app: fresh application on an in-memory SQLite database per test
- client / accountant_client / viewer_client / admin_client: test clients,
  the latter three already logged in with the given role
- books: small factory that creates master data and documents through the JSON API
"""

import pytest

from accounting import create_app
from accounting.extensions import db
from accounting.models import User
from config import TestConfig

PASSWORD = "tajna-lozinka"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(app, username: str, role: str, password: str = PASSWORD, is_active: bool = True) -> int:
    with app.app_context():
        user = User(username=username, role=role, is_active=is_active)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user.id


@pytest.fixture
def make_user(app):
    """make_user("ana", "accountant", password=..., is_active=...) -> user id"""
    def _make(username: str, role: str, **kwargs) -> int:
        return create_user(app, username, role, **kwargs)
    return _make


def logged_in_client(app, username: str, role: str):
    create_user(app, username, role)
    client = app.test_client()
    response = client.post("/auth/login", json={"username": username, "password": PASSWORD})
    assert response.status_code == 200, response.get_json()
    return client


@pytest.fixture
def accountant_client(app):
    return logged_in_client(app, "ana", "accountant")


@pytest.fixture
def viewer_client(app):
    return logged_in_client(app, "vid", "viewer")


@pytest.fixture
def admin_client(app):
    return logged_in_client(app, "admin", "admin")


class Books:
    """Creates records through the API and returns the JSON of each created row."""

    def __init__(self, client):
        self.client = client
        self._oib = 10000000000

    def _post(self, url: str, payload: dict) -> dict:
        response = self.client.post(url, json=payload)
        assert response.status_code == 201, response.get_json()
        return response.get_json()

    def company(self, name: str = "Gradnja d.o.o.") -> dict:
        self._oib += 1
        return self._post("/settings/companies", {"name": name, "oib": str(self._oib)})

    def account(self, company_id: int, balance: str = "0", bank_name: str = "Zagrebačka banka") -> dict:
        return self._post(
            f"/settings/companies/{company_id}/accounts",
            {"bank_name": bank_name, "account_number": "HR1210010051863000160", "current_balance": balance},
        )

    def party(self, kind: str = "suppliers", name: str = "Zidar obrt", **fields) -> dict:
        return self._post(f"/settings/parties/{kind}", {"name": name, **fields})

    def bank(self, name: str = "Erste banka") -> dict:
        return self._post("/credits/banks", {"name": name})

    def invoice(self, company_id: int, **overrides) -> dict:
        payload = {
            "invoice_type": "INCOMING_SUPPLIER",
            "company_id": company_id,
            "invoice_number": "R-1/2024",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "1000.00",
        }
        payload.update(overrides)
        return self._post("/invoices/", payload)

    def credit(self, bank_id: int, **overrides) -> dict:
        payload = {
            "bank_id": bank_id,
            "credit_name": "Kredit za izgradnju",
            "credit_type": "construction_loan_senior",
            "amount": "100000",
            "interest_rate": "5",
            "start_date": "2024-01-01",
            "maturity_date": "2034-01-01",
            "repayment_type": "yearly",
        }
        payload.update(overrides)
        return self._post("/credits/", payload)

    def payment(self, invoice_id: int, amount: str, **overrides) -> dict:
        payload = {
            "invoice_id": invoice_id,
            "amount": amount,
            "payment_date": "15/03/2024",
            "payment_method": "WIRE",
        }
        payload.update(overrides)
        return self._post("/payments/", payload)


@pytest.fixture
def books(accountant_client):
    return Books(accountant_client)
