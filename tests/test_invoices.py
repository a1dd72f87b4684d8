import pytest


@pytest.fixture
def company(books):
    return books.company()


@pytest.fixture
def supplier(books):
    return books.party("suppliers", "Zidar obrt")


class TestCreateInvoice:

    def test_totals_from_four_slots(self, books, company, supplier):
        invoice = books.invoice(
            company["id"],
            supplier_id=supplier["id"],
            base_amount_1="1000",
            base_amount_2="100",
            base_amount_3="50",
            base_amount_4="200",
        )

        assert invoice["vat_amount_1"] == 250.0
        assert invoice["vat_amount_2"] == 13.0
        assert invoice["vat_amount_3"] == 0.0
        assert invoice["vat_amount_4"] == 10.0
        assert invoice["base_amount"] == 1350.0
        assert invoice["vat_amount"] == 273.0
        assert invoice["total_amount"] == 1623.0
        assert invoice["remaining_amount"] == 1623.0
        assert invoice["paid_amount"] == 0.0
        assert invoice["status"] == "UNPAID"

    def test_client_totals_are_ignored(self, books, company, supplier):
        invoice = books.invoice(
            company["id"],
            supplier_id=supplier["id"],
            total_amount="1",
            status="PAID",
            paid_amount="999",
        )
        assert invoice["total_amount"] == 1250.0
        assert invoice["status"] == "UNPAID"
        assert invoice["paid_amount"] == 0.0

    def test_subcontractor_invoice_needs_approval(self, books, company, supplier):
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])

        assert invoice["invoice_category"] == "SUBCONTRACTOR"
        assert invoice["approved"] is False
        assert invoice["party_name"] == "Zidar obrt"
        assert invoice["type_label"] == "ULAZNI (DOB)"

    def test_office_invoice_is_approved_by_default(self, books, company):
        office = books.party("office-suppliers", "Papirnica")
        invoice = books.invoice(company["id"], invoice_type="INCOMING_OFFICE", office_supplier_id=office["id"])

        assert invoice["invoice_category"] == "OFFICE"
        assert invoice["approved"] is True

    def test_investment_from_bank_is_bank_credit(self, books, company):
        bank = books.bank()
        invoice = books.invoice(company["id"], invoice_type="INCOMING_INVESTMENT", bank_id=bank["id"])
        assert invoice["invoice_category"] == "BANK_CREDIT"

    def test_investment_from_investor(self, books, company):
        investor = books.party("investors", "Fond d.d.")
        invoice = books.invoice(company["id"], invoice_type="INCOMING_INVESTMENT", investor_id=investor["id"])
        assert invoice["invoice_category"] == "INVESTOR"
        assert invoice["approved"] is False

    def test_retail_party_wins_category(self, books, company):
        retail = books.party("retail-suppliers", "Bauhaus")
        invoice = books.invoice(company["id"], retail_supplier_id=retail["id"])
        assert invoice["invoice_category"] == "RETAIL"

    def test_sale_to_customer(self, books, company):
        customer = books.party("customers", "Ivan", surname="Horvat")
        invoice = books.invoice(company["id"], invoice_type="OUTGOING_SALES", customer_id=customer["id"])

        assert invoice["invoice_category"] == "CUSTOMER"
        assert invoice["party_name"] == "Ivan Horvat"

    def test_party_outside_type_is_cleared(self, books, company, supplier):
        office = books.party("office-suppliers", "Papirnica")
        invoice = books.invoice(
            company["id"],
            invoice_type="INCOMING_OFFICE",
            office_supplier_id=office["id"],
            supplier_id=supplier["id"],
        )
        assert invoice["office_supplier_id"] == office["id"]
        assert invoice["supplier_id"] is None

    def test_masked_dates_are_accepted(self, books, company, supplier):
        invoice = books.invoice(
            company["id"], supplier_id=supplier["id"], issue_date="01/03/2024", due_date="31/03/2024"
        )
        assert invoice["issue_date"] == "2024-03-01"
        assert invoice["due_date"] == "2024-03-31"


class TestInvoiceValidation:

    def _post(self, client, company_id, **overrides):
        payload = {
            "invoice_type": "INCOMING_SUPPLIER",
            "company_id": company_id,
            "invoice_number": "R-9",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "100",
        }
        payload.update(overrides)
        return client.post("/invoices/", json=payload)

    def test_party_required(self, accountant_client, company):
        response = self._post(accountant_client, company["id"])

        assert response.status_code == 400
        assert response.get_json()["field"] == "supplier_id"

    def test_only_one_party(self, books, accountant_client, company, supplier):
        retail = books.party("retail-suppliers", "Bauhaus")
        response = self._post(
            accountant_client, company["id"], supplier_id=supplier["id"], retail_supplier_id=retail["id"]
        )
        assert response.status_code == 400

    def test_at_least_one_base(self, accountant_client, company, supplier):
        response = self._post(accountant_client, company["id"], supplier_id=supplier["id"], base_amount_1="0")

        assert response.status_code == 400
        assert response.get_json() == {"error": "Molimo unesite barem jednu osnovicu.", "field": "base_amount_1"}

    def test_negative_base(self, accountant_client, company, supplier):
        response = self._post(accountant_client, company["id"], supplier_id=supplier["id"], base_amount_2="-5")
        assert response.status_code == 400
        assert response.get_json()["field"] == "base_amount_2"

    def test_due_before_issue(self, accountant_client, company, supplier):
        response = self._post(
            accountant_client, company["id"], supplier_id=supplier["id"], due_date="2024-02-01"
        )
        assert response.status_code == 400
        assert response.get_json()["field"] == "due_date"

    def test_invalid_masked_date(self, accountant_client, company, supplier):
        response = self._post(accountant_client, company["id"], supplier_id=supplier["id"], issue_date="32/01/2024")
        assert response.status_code == 400
        assert response.get_json()["field"] == "issue_date"

    def test_unknown_type(self, accountant_client, company, supplier):
        response = self._post(accountant_client, company["id"], supplier_id=supplier["id"], invoice_type="OTHER")
        assert response.status_code == 400

    def test_unknown_company(self, accountant_client, supplier):
        response = self._post(accountant_client, 999, supplier_id=supplier["id"])
        assert response.status_code == 400
        assert response.get_json()["field"] == "company_id"


class TestMilestoneInvoices:

    @pytest.fixture
    def contract(self, accountant_client, supplier):
        response = accountant_client.post("/settings/contracts", json={
            "contract_number": "UG-1/2024",
            "supplier_id": supplier["id"],
            "contract_amount": "125000",
        })
        assert response.status_code == 201
        return response.get_json()

    @pytest.fixture
    def milestone(self, accountant_client, contract):
        response = accountant_client.post(f"/settings/contracts/{contract['id']}/milestones", json={
            "milestone_number": 1,
            "milestone_name": "Temelji",
            "percentage": "20",
        })
        assert response.status_code == 201
        return response.get_json()

    def test_base_from_milestone(self, books, company, supplier, milestone, contract):
        invoice = books.invoice(
            company["id"], supplier_id=supplier["id"], base_amount_1=None, milestone_id=milestone["id"]
        )

        assert invoice["base_amount_1"] == 20000.0
        assert invoice["total_amount"] == 25000.0
        assert invoice["contract_id"] == contract["id"]

    def test_typed_base_overrides_milestone(self, books, company, supplier, milestone):
        invoice = books.invoice(
            company["id"], supplier_id=supplier["id"], base_amount_1="15000", milestone_id=milestone["id"]
        )
        assert invoice["base_amount_1"] == 15000.0

    def test_milestone_amount_helper(self, accountant_client, milestone):
        response = accountant_client.get(f"/invoices/milestone-amount?milestone_id={milestone['id']}")
        assert response.get_json()["base_amount_1"] == 20000.0

    def test_milestone_of_other_contract(self, books, accountant_client, company, supplier, milestone):
        other = accountant_client.post("/settings/contracts", json={
            "contract_number": "UG-2/2024",
            "supplier_id": supplier["id"],
            "contract_amount": "1000",
        }).get_json()

        response = accountant_client.post("/invoices/", json={
            "invoice_type": "INCOMING_SUPPLIER",
            "company_id": company["id"],
            "supplier_id": supplier["id"],
            "invoice_number": "R-2",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "contract_id": other["id"],
            "milestone_id": milestone["id"],
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "milestone_id"

    def test_form_options_hide_paid_milestones(self, accountant_client, contract, milestone, supplier):
        accountant_client.post(f"/settings/contracts/{contract['id']}/milestones", json={
            "milestone_number": 2,
            "milestone_name": "Krov",
            "percentage": "30",
            "status": "paid",
        })

        options = accountant_client.get(
            f"/invoices/form-options?contract_id={contract['id']}&supplier_id={supplier['id']}"
        ).get_json()

        assert [m["milestone_name"] for m in options["milestones"]] == ["Temelji"]
        assert [c["contract_number"] for c in options["contracts"]] == ["UG-1/2024"]


class TestListAndStatistics:

    @pytest.fixture
    def invoices(self, books, company, supplier):
        customer = books.party("customers", "Ana", surname="Kovač")
        first = books.invoice(company["id"], supplier_id=supplier["id"], invoice_number="D-1")
        second = books.invoice(company["id"], supplier_id=supplier["id"], invoice_number="D-2", base_amount_1="200")
        sale = books.invoice(
            company["id"], invoice_type="OUTGOING_SALES", customer_id=customer["id"], invoice_number="P-1"
        )
        return first, second, sale

    def test_group_filter(self, accountant_client, invoices):
        data = accountant_client.get("/invoices/?type=INCOMING").get_json()

        assert {i["invoice_number"] for i in data["items"]} == {"D-1", "D-2"}
        assert data["statistics"]["filtered_count"] == 2
        assert data["statistics"]["filtered_unpaid_sum"] == 1500.0
        assert data["statistics"]["total_unpaid_sum"] == 2750.0

    def test_search_over_party_names(self, accountant_client, invoices):
        data = accountant_client.get("/invoices/?search=kovač").get_json()
        assert [i["invoice_number"] for i in data["items"]] == ["P-1"]

    def test_status_filter_and_paid_invoices(self, books, accountant_client, company, invoices):
        account = books.account(company["id"], "10000")
        books.payment(invoices[0]["id"], "1250", company_bank_account_id=account["id"])

        paid = accountant_client.get("/invoices/statistics?status=PAID").get_json()
        unpaid = accountant_client.get("/invoices/statistics?status=UNPAID").get_json()

        assert paid["filtered_count"] == 1
        assert paid["filtered_unpaid_sum"] == 0.0
        assert unpaid["filtered_count"] == 2
        assert unpaid["total_unpaid_sum"] == 1500.0

    def test_pagination(self, accountant_client, invoices):
        data = accountant_client.get("/invoices/?page=2&per_page=2").get_json()

        assert len(data["items"]) == 1
        assert data["statistics"]["filtered_count"] == 3

    def test_invalid_filter(self, accountant_client):
        assert accountant_client.get("/invoices/?status=LATE").status_code == 400


class TestInvoiceLifecycle:

    def test_approve_and_unapprove(self, books, accountant_client, company, supplier):
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])

        approved = accountant_client.post(f"/invoices/{invoice['id']}/approve").get_json()
        assert approved["approved"] is True

        unapproved = accountant_client.post(f"/invoices/{invoice['id']}/unapprove").get_json()
        assert unapproved["approved"] is False

    def test_update_keeps_approval(self, books, accountant_client, company, supplier):
        invoice = books.invoice(company["id"], supplier_id=supplier["id"], approved=True)

        response = accountant_client.put(f"/invoices/{invoice['id']}", json={
            "invoice_type": "INCOMING_SUPPLIER",
            "company_id": company["id"],
            "supplier_id": supplier["id"],
            "invoice_number": "R-1/2024",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "2000",
            "approved": False,
        })

        assert response.status_code == 200
        assert response.get_json()["approved"] is True
        assert response.get_json()["total_amount"] == 2500.0

    def test_total_cannot_drop_below_paid(self, books, accountant_client, company, supplier):
        account = books.account(company["id"], "5000")
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])
        books.payment(invoice["id"], "1000", company_bank_account_id=account["id"])

        response = accountant_client.put(f"/invoices/{invoice['id']}", json={
            "invoice_type": "INCOMING_SUPPLIER",
            "company_id": company["id"],
            "supplier_id": supplier["id"],
            "invoice_number": "R-1/2024",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "100",
        })

        assert response.status_code == 400
        detail = accountant_client.get(f"/invoices/{invoice['id']}").get_json()
        assert detail["total_amount"] == 1250.0
        assert detail["status"] == "PARTIALLY_PAID"

    def test_direction_locked_once_paid(self, books, accountant_client, company, supplier):
        account = books.account(company["id"], "1000")
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])
        payment = books.payment(invoice["id"], "50", company_bank_account_id=account["id"])

        response = accountant_client.put(f"/invoices/{invoice['id']}", json={
            "invoice_type": "OUTGOING_SALES",
            "company_id": company["id"],
            "invoice_number": "R-1/2024",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "1000",
        })
        assert response.status_code == 400
        assert response.get_json()["field"] == "invoice_type"

        accountant_client.delete(f"/payments/{payment['id']}")
        companies = accountant_client.get("/settings/companies").get_json()
        assert companies[0]["bank_accounts"][0]["current_balance"] == 1000.0

    def test_company_locked_once_paid(self, books, accountant_client, company, supplier):
        other = books.company("Druga d.o.o.")
        account = books.account(company["id"], "1000")
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])
        books.payment(invoice["id"], "50", company_bank_account_id=account["id"])

        response = accountant_client.put(f"/invoices/{invoice['id']}", json={
            "invoice_type": "INCOMING_SUPPLIER",
            "company_id": other["id"],
            "supplier_id": supplier["id"],
            "invoice_number": "R-1/2024",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "1000",
        })

        assert response.status_code == 400
        assert response.get_json()["field"] == "company_id"

    def test_type_change_without_payments(self, books, accountant_client, company):
        papirnica = books.party("office-suppliers", "Papirnica")
        invoice = books.invoice(company["id"], invoice_type="INCOMING_OFFICE", office_supplier_id=papirnica["id"])

        response = accountant_client.put(f"/invoices/{invoice['id']}", json={
            "invoice_type": "OUTGOING_OFFICE",
            "company_id": company["id"],
            "office_supplier_id": papirnica["id"],
            "invoice_number": "R-1/2024",
            "issue_date": "2024-03-01",
            "due_date": "2024-03-31",
            "base_amount_1": "1000",
        })

        assert response.status_code == 200
        assert response.get_json()["invoice_type"] == "OUTGOING_OFFICE"

    def test_delete_restores_account_balance(self, books, accountant_client, company, supplier):
        account = books.account(company["id"], "5000")
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])
        books.payment(invoice["id"], "1250", company_bank_account_id=account["id"])

        response = accountant_client.delete(f"/invoices/{invoice['id']}")
        assert response.status_code == 200

        companies = accountant_client.get("/settings/companies").get_json()
        assert companies[0]["bank_accounts"][0]["current_balance"] == 5000.0
        assert accountant_client.get(f"/invoices/{invoice['id']}").status_code == 404

    def test_detail_lists_payments(self, books, accountant_client, company, supplier):
        account = books.account(company["id"], "5000")
        invoice = books.invoice(company["id"], supplier_id=supplier["id"])
        books.payment(invoice["id"], "250", company_bank_account_id=account["id"])

        detail = accountant_client.get(f"/invoices/{invoice['id']}").get_json()

        assert [p["amount"] for p in detail["payments"]] == [250.0]
        assert detail["remaining_amount"] == 1000.0


def test_vat_preview(accountant_client):
    data = accountant_client.post("/invoices/vat-preview", json={
        "base_amount_1": "1.000,00",
        "base_amount_4": "200",
    }).get_json()

    assert data["rates"] == [25.0, 13.0, 0.0, 5.0]
    assert data["vat_amounts"] == [250.0, 0.0, 0.0, 10.0]
    assert data["total"] == 1460.0


@pytest.mark.parametrize("raw", ["NaN", "Infinity", "sNaN"])
def test_vat_preview_rejects_non_finite_amounts(accountant_client, raw):
    response = accountant_client.post("/invoices/vat-preview", json={"base_amount_1": raw})

    assert response.status_code == 400
    assert response.get_json()["field"] == "base_amount_1"
