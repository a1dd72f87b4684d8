"""
accounting/blueprints/invoices/queries.py

Invoice list filtering and the statistics shown above the invoice table.

Filters:
- invoice_type: "ALL", one of INVOICE_TYPES, or the groups "INCOMING" / "OUTGOING"
- status: "ALL" or one of INVOICE_STATUSES
- company_id: optional
- search: free text over invoice number, reference, description and party names
"""

from __future__ import annotations

from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload

from ...calculations import STATUS_PAID
from ...extensions import db
from ...models import (
    Bank,
    Customer,
    Invoice,
    Investor,
    OfficeSupplier,
    RetailCustomer,
    RetailSupplier,
    Supplier,
)

INVOICE_TYPE_GROUPS = ("INCOMING", "OUTGOING")


def _filtered_query(invoice_type: str = "ALL", status: str = "ALL", company_id: int | None = None, search: str | None = None):
    q = Invoice.query

    invoice_type = (invoice_type or "ALL").upper()
    if invoice_type in INVOICE_TYPE_GROUPS:
        q = q.filter(Invoice.invoice_type.like(f"{invoice_type}_%"))
    elif invoice_type != "ALL":
        q = q.filter(Invoice.invoice_type == invoice_type)

    status = (status or "ALL").upper()
    if status != "ALL":
        q = q.filter(Invoice.status == status)

    if company_id:
        q = q.filter(Invoice.company_id == company_id)

    search = (search or "").strip()
    if search:
        pattern = f"%{search}%"
        q = (
            q.outerjoin(Supplier, Invoice.supplier_id == Supplier.id)
            .outerjoin(OfficeSupplier, Invoice.office_supplier_id == OfficeSupplier.id)
            .outerjoin(RetailSupplier, Invoice.retail_supplier_id == RetailSupplier.id)
            .outerjoin(RetailCustomer, Invoice.retail_customer_id == RetailCustomer.id)
            .outerjoin(Customer, Invoice.customer_id == Customer.id)
            .outerjoin(Investor, Invoice.investor_id == Investor.id)
            .outerjoin(Bank, Invoice.bank_id == Bank.id)
            .filter(
                or_(
                    Invoice.invoice_number.ilike(pattern),
                    func.coalesce(Invoice.reference_number, "").ilike(pattern),
                    func.coalesce(Invoice.description, "").ilike(pattern),
                    func.coalesce(Supplier.name, "").ilike(pattern),
                    func.coalesce(OfficeSupplier.name, "").ilike(pattern),
                    func.coalesce(RetailSupplier.name, "").ilike(pattern),
                    func.coalesce(RetailCustomer.name, "").ilike(pattern),
                    func.coalesce(Customer.name, "").ilike(pattern),
                    func.coalesce(Customer.surname, "").ilike(pattern),
                    func.coalesce(Investor.name, "").ilike(pattern),
                    func.coalesce(Bank.name, "").ilike(pattern),
                )
            )
        )

    return q


def _with_list_eagerloads(q):
    """Prevent N+1 when serializing list rows (party_name touches every counterparty)."""
    return q.options(
        joinedload(Invoice.company),
        joinedload(Invoice.supplier),
        joinedload(Invoice.office_supplier),
        joinedload(Invoice.retail_supplier),
        joinedload(Invoice.retail_customer),
        joinedload(Invoice.customer),
        joinedload(Invoice.investor),
        joinedload(Invoice.bank),
    )


def filtered_invoices(
    invoice_type: str = "ALL",
    status: str = "ALL",
    company_id: int | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[Invoice]:
    """One page of filtered invoices, newest issue date first."""
    q = _with_list_eagerloads(_filtered_query(invoice_type, status, company_id, search))
    return (
        q.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        .offset(max(offset, 0))
        .limit(limit)
        .all()
    )


def _unpaid_sum(q):
    return (
        q.filter(Invoice.status != STATUS_PAID)
        .with_entities(func.coalesce(func.sum(Invoice.remaining_amount), 0))
        .scalar()
    )


def invoice_statistics(
    invoice_type: str = "ALL",
    status: str = "ALL",
    company_id: int | None = None,
    search: str | None = None,
) -> dict:
    """
    Counters for the invoice list header.

    filtered_count      number of invoices matching the filters
    filtered_unpaid_sum remaining amount of the matching invoices that are not PAID
    total_unpaid_sum    remaining amount of every invoice that is not PAID
    """
    filtered = _filtered_query(invoice_type, status, company_id, search)
    return {
        "filtered_count": filtered.count(),
        "filtered_unpaid_sum": float(_unpaid_sum(filtered)),
        "total_unpaid_sum": float(_unpaid_sum(db.session.query(Invoice))),
    }
