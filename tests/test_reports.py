def test_debt_status_per_supplier(books, accountant_client):
    company = books.company()
    other = books.company("Druga d.o.o.")
    account = books.account(company["id"], "10000")

    zidar = books.party("suppliers", "Zidar obrt")
    bauhaus = books.party("retail-suppliers", "Bauhaus")
    papirnica = books.party("office-suppliers", "Papirnica")
    books.party("suppliers", "Bez računa d.o.o.")

    first = books.invoice(company["id"], supplier_id=zidar["id"], invoice_number="Z-1")
    books.invoice(company["id"], supplier_id=zidar["id"], invoice_number="Z-2", base_amount_1="400")
    books.invoice(company["id"], retail_supplier_id=bauhaus["id"], invoice_number="B-1", base_amount_1="200")
    office = books.invoice(
        company["id"], invoice_type="INCOMING_OFFICE", office_supplier_id=papirnica["id"], base_amount_1="80"
    )
    books.invoice(other["id"], supplier_id=zidar["id"], invoice_number="Z-3", base_amount_1="100")

    books.payment(first["id"], "500", company_bank_account_id=account["id"])
    books.payment(office["id"], "100", company_bank_account_id=account["id"])

    report = accountant_client.get(f"/reports/debt-status?company_id={company['id']}").get_json()
    rows = {r["supplier_name"]: r for r in report["items"]}

    assert list(rows) == ["Zidar obrt", "Bauhaus", "Papirnica"]
    assert rows["Zidar obrt"]["total_paid"] == 500.0
    assert rows["Zidar obrt"]["total_unpaid"] == 1250.0
    assert rows["Zidar obrt"]["invoice_count"] == 2
    assert rows["Bauhaus"]["supplier_type"] == "retail_supplier"
    assert rows["Papirnica"]["total_unpaid"] == 0.0
    assert report["total_paid"] == 600.0
    assert report["total_unpaid"] == 1500.0


def test_debt_status_across_companies(books, accountant_client):
    first = books.company("Prva d.o.o.")
    second = books.company("Druga d.o.o.")
    zidar = books.party("suppliers", "Zidar obrt")
    books.invoice(first["id"], supplier_id=zidar["id"])
    books.invoice(second["id"], supplier_id=zidar["id"], base_amount_1="100")

    report = accountant_client.get("/reports/debt-status").get_json()

    assert report["items"][0]["invoice_count"] == 2
    assert report["total_unpaid"] == 1375.0


def test_debt_status_export(books, accountant_client):
    company = books.company()
    account = books.account(company["id"], "10000")
    zidar = books.party("suppliers", "Zidar obrt")
    papirnica = books.party("office-suppliers", "Papirnica")

    first = books.invoice(company["id"], supplier_id=zidar["id"], invoice_number="Z-1", base_amount_1="1000000")
    books.invoice(
        company["id"], invoice_type="INCOMING_OFFICE", office_supplier_id=papirnica["id"], base_amount_1="80"
    )
    books.payment(first["id"], "500", company_bank_account_id=account["id"])

    response = accountant_client.get(f"/reports/debt-status/export?company_id={company['id']}")

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert "stanje_duga_" in response.headers["Content-Disposition"]

    lines = response.get_data(as_text=True).lstrip("\ufeff").splitlines()
    assert lines[0] == "Firma;Tip;Računi;Neisplaćeno (€);Isplaćeno (€);Ukupno (€)"
    assert lines[1] == "Zidar obrt;Gradilište;1;1.249.500,00;500,00;1.250.000,00"
    assert lines[2] == "Papirnica;Ured;1;100,00;0,00;100,00"
    assert lines[3] == "UKUPNO;;;1.249.600,00;500,00;1.250.100,00"
    assert len(lines) == 4
