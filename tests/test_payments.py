import pytest


@pytest.fixture
def company(books):
    return books.company("Gradnja d.o.o.")


@pytest.fixture
def account(books, company):
    return books.account(company["id"], "5000")


@pytest.fixture
def invoice(books, company):
    supplier = books.party("suppliers", "Zidar obrt")
    # total 1.250,00
    return books.invoice(company["id"], supplier_id=supplier["id"])


def _balance(client, account_id):
    for company in client.get("/settings/companies").get_json():
        for account in company["bank_accounts"]:
            if account["id"] == account_id:
                return account["current_balance"]
    raise AssertionError(f"account {account_id} not found")


def _invoice(client, invoice_id):
    return client.get(f"/invoices/{invoice_id}").get_json()


class TestPaymentStatus:

    def test_partial_then_full(self, books, accountant_client, invoice, account):
        books.payment(invoice["id"], "500", company_bank_account_id=account["id"])
        data = _invoice(accountant_client, invoice["id"])
        assert data["status"] == "PARTIALLY_PAID"
        assert data["paid_amount"] == 500.0
        assert data["remaining_amount"] == 750.0

        books.payment(invoice["id"], "750", company_bank_account_id=account["id"])
        data = _invoice(accountant_client, invoice["id"])
        assert data["status"] == "PAID"
        assert data["remaining_amount"] == 0.0
        assert data["is_overdue"] is False

    def test_overpayment_is_rejected(self, books, accountant_client, invoice, account):
        books.payment(invoice["id"], "1000", company_bank_account_id=account["id"])

        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "300",
            "payment_date": "2024-03-20",
            "company_bank_account_id": account["id"],
        })

        assert response.status_code == 400
        body = response.get_json()
        assert body["field"] == "amount"
        assert "€250,00" in body["error"]

        data = _invoice(accountant_client, invoice["id"])
        assert data["paid_amount"] == 1000.0
        assert _balance(accountant_client, account["id"]) == 4000.0

    def test_cent_tolerance(self, books, accountant_client, invoice, account):
        books.payment(invoice["id"], "1250.01", company_bank_account_id=account["id"])
        assert _invoice(accountant_client, invoice["id"])["status"] == "PAID"

    def test_delete_recomputes_status(self, books, accountant_client, invoice, account):
        books.payment(invoice["id"], "500", company_bank_account_id=account["id"])
        second = books.payment(invoice["id"], "750", company_bank_account_id=account["id"])

        response = accountant_client.delete(f"/payments/{second['id']}")

        assert response.status_code == 200
        assert response.get_json()["invoice"]["status"] == "PARTIALLY_PAID"
        assert response.get_json()["invoice"]["paid_amount"] == 500.0
        assert _balance(accountant_client, account["id"]) == 4500.0

    def test_delete_last_payment_leaves_unpaid(self, books, accountant_client, invoice, account):
        payment = books.payment(invoice["id"], "1250", company_bank_account_id=account["id"])

        accountant_client.delete(f"/payments/{payment['id']}")

        assert _invoice(accountant_client, invoice["id"])["status"] == "UNPAID"

    def test_update_amount_moves_balance(self, books, accountant_client, invoice, account):
        payment = books.payment(invoice["id"], "500", company_bank_account_id=account["id"])

        response = accountant_client.put(f"/payments/{payment['id']}", json={
            "amount": "800",
            "payment_date": "16/03/2024",
            "company_bank_account_id": account["id"],
        })

        assert response.status_code == 200
        assert response.get_json()["payment_date"] == "2024-03-16"
        assert _balance(accountant_client, account["id"]) == 4200.0
        assert _invoice(accountant_client, invoice["id"])["paid_amount"] == 800.0


class TestPaymentValidation:

    def test_amount_must_be_positive(self, accountant_client, invoice, account):
        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "0",
            "payment_date": "2024-03-20",
            "company_bank_account_id": account["id"],
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "amount"

    def test_invalid_masked_date(self, accountant_client, invoice, account):
        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "10",
            "payment_date": "31/02/2024",
            "company_bank_account_id": account["id"],
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "payment_date"

    def test_account_of_other_company(self, books, accountant_client, invoice):
        other = books.company("Druga d.o.o.")
        foreign_account = books.account(other["id"], "100")

        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "10",
            "payment_date": "2024-03-20",
            "company_bank_account_id": foreign_account["id"],
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "company_bank_account_id"


class TestBalanceDirection:

    def test_collected_sale_raises_balance(self, books, accountant_client, company, account):
        customer = books.party("customers", "Ivan", surname="Horvat")
        sale = books.invoice(company["id"], invoice_type="OUTGOING_SALES", customer_id=customer["id"])

        books.payment(sale["id"], "1000", company_bank_account_id=account["id"])

        assert _balance(accountant_client, account["id"]) == 6000.0


class TestCesija:

    def test_third_company_pays(self, books, accountant_client, company, account, invoice):
        payer = books.company("Platitelj d.o.o.")
        payer_account = books.account(payer["id"], "2000")

        payment = books.payment(
            invoice["id"],
            "1250",
            is_cesija=True,
            cesija_company_id=payer["id"],
            cesija_bank_account_id=payer_account["id"],
            company_bank_account_id=account["id"],
        )

        assert payment["is_cesija"] is True
        assert payment["cesija_company_name"] == "Platitelj d.o.o."
        assert payment["company_bank_account_id"] is None
        assert _balance(accountant_client, payer_account["id"]) == 750.0
        assert _balance(accountant_client, account["id"]) == 5000.0
        assert _invoice(accountant_client, invoice["id"])["status"] == "PAID"

    def test_same_company_is_rejected(self, accountant_client, company, account, invoice):
        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "100",
            "payment_date": "2024-03-20",
            "is_cesija": True,
            "cesija_company_id": company["id"],
            "cesija_bank_account_id": account["id"],
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "cesija_company_id"


class TestCreditSource:

    @pytest.fixture
    def bank(self, books):
        return books.bank()

    def test_payment_draws_credit(self, books, accountant_client, invoice, bank):
        credit = books.credit(bank["id"])

        books.payment(invoice["id"], "1000", payment_source_type="credit", credit_id=credit["id"])

        data = accountant_client.get(f"/credits/{credit['id']}").get_json()
        assert data["used_amount"] == 1000.0
        assert data["available_amount"] == 99000.0
        assert data["outstanding_balance"] == 1000.0

    def test_allocation_usage(self, books, accountant_client, invoice, bank):
        credit = books.credit(bank["id"])
        allocation = accountant_client.post(
            f"/credits/{credit['id']}/allocations", json={"allocated_amount": "1000"}
        ).get_json()

        books.payment(
            invoice["id"],
            "600",
            payment_source_type="credit",
            credit_id=credit["id"],
            credit_allocation_id=allocation["id"],
        )
        allocations = accountant_client.get(f"/credits/{credit['id']}/allocations").get_json()
        assert allocations[0]["used_amount"] == 600.0
        assert allocations[0]["available_amount"] == 400.0

        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "500",
            "payment_date": "2024-03-20",
            "payment_source_type": "credit",
            "credit_id": credit["id"],
            "credit_allocation_id": allocation["id"],
        })
        assert response.status_code == 400

    def test_disbursed_credit_cannot_pay(self, books, accountant_client, company, invoice, bank, account):
        credit = books.credit(bank["id"], disbursed_to_account=True, disbursed_to_bank_account_id=account["id"])

        response = accountant_client.post("/payments/", json={
            "invoice_id": invoice["id"],
            "amount": "100",
            "payment_date": "2024-03-20",
            "payment_source_type": "credit",
            "credit_id": credit["id"],
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "credit_id"

        sources = accountant_client.get(f"/payments/sources?company_id={company['id']}").get_json()
        assert sources["credits"] == []
        assert [a["id"] for a in sources["bank_accounts"]] == [account["id"]]

    def test_deleting_payment_releases_credit(self, books, accountant_client, invoice, bank):
        credit = books.credit(bank["id"])
        payment = books.payment(invoice["id"], "1000", payment_source_type="credit", credit_id=credit["id"])

        accountant_client.delete(f"/payments/{payment['id']}")

        assert accountant_client.get(f"/credits/{credit['id']}").get_json()["used_amount"] == 0.0


class TestPaymentList:

    def test_filters_and_statistics(self, books, accountant_client, company, account, invoice):
        customer = books.party("customers", "Ivan", surname="Horvat")
        sale = books.invoice(
            company["id"], invoice_type="OUTGOING_SALES", customer_id=customer["id"], invoice_number="P-7"
        )
        books.payment(invoice["id"], "100", company_bank_account_id=account["id"])
        books.payment(invoice["id"], "50", payment_method="CASH", company_bank_account_id=account["id"])
        books.payment(sale["id"], "300", company_bank_account_id=account["id"])

        everything = accountant_client.get("/payments/").get_json()
        assert everything["statistics"]["count"] == 3
        assert everything["statistics"]["total"] == 450.0
        assert everything["statistics"]["by_method"]["CASH"] == {"label": "Gotovina", "count": 1, "total": 50.0}

        expenses = accountant_client.get("/payments/?direction=EXPENSE").get_json()
        assert sorted(p["amount"] for p in expenses["items"]) == [50.0, 100.0]

        income = accountant_client.get("/payments/stats?direction=INCOME").get_json()
        assert income["total"] == 300.0

        searched = accountant_client.get("/payments/?search=P-7").get_json()
        assert [p["invoice_number"] for p in searched["items"]] == ["P-7"]
