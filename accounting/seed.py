"""
accounting/seed.py

Seed default invoice categories and refund types.

Rules:
- Safe to run multiple times (idempotent): rows are matched by name.
- Existing categories keep their is_active flag; only sort_order is synced.

NOTE:
- Companies, suppliers, banks etc. are first-class master data and are not seeded.
"""

from __future__ import annotations

import logging

from .extensions import db
from .models import InvoiceCategory, Refund

logger = logging.getLogger(__name__)


DEFAULT_INVOICE_CATEGORIES = [
    "Građevinski radovi",
    "Materijal",
    "Projektiranje",
    "Nadzor",
    "Komunalni doprinos",
    "Uredski troškovi",
    "Marketing",
    "Pravne usluge",
    "Financiranje",
    "Prodaja stanova",
    "Ostalo",
]

DEFAULT_REFUNDS = [
    "Povrat jamčevine",
    "Povrat predujma",
    "Storno",
]


def seed_default_options() -> dict:
    """Create missing categories and refund types. Returns how many rows were added."""
    added = {"categories": 0, "refunds": 0}

    for idx, name in enumerate(DEFAULT_INVOICE_CATEGORIES):
        category = InvoiceCategory.query.filter_by(name=name).first()
        if category:
            category.sort_order = idx
            continue
        db.session.add(InvoiceCategory(name=name, sort_order=idx, is_active=True))
        added["categories"] += 1

    for name in DEFAULT_REFUNDS:
        if Refund.query.filter_by(name=name).first():
            continue
        db.session.add(Refund(name=name))
        added["refunds"] += 1

    db.session.commit()
    logger.info("Seeded %s invoice categories and %s refund types", added["categories"], added["refunds"])
    return added
