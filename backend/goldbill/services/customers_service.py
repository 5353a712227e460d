# Overview: Service-layer operations for the customer directory hooks used by sale documents.

from __future__ import annotations

from flask import current_app
from sqlalchemy import delete, update

from ..extensions import db
from ..models import Customer, SaleDocument
from ..errors import NotFound, ReferentialConflict, ValidationError
from .concurrency import lock_for_update, unit_of_work


def create_customer(*, name: str, phone: str | None = None, email: str | None = None, address: str | None = None) -> Customer:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name", "name is required")

    with unit_of_work():
        customer = Customer(
            name=name,
            phone=(phone or "").strip() or None,
            email=(email or "").strip() or None,
            address=(address or "").strip() or None,
        )
        db.session.add(customer)
    return customer


def delete_customer(customer_id: int, *, cascade: bool = False) -> dict:
    """
    Hard delete a customer.

    Documents keep their own name/phone/address snapshot, so the cascade only
    detaches them (customer_id -> NULL) before removing the customer row.
    """
    with unit_of_work():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})

        refs = db.session.query(SaleDocument).filter_by(customer_id=customer_id).count()
        if refs and not cascade:
            raise ReferentialConflict(
                f"Customer {customer_id} is referenced by {refs} sale document(s)",
                details={"customer_id": customer_id, "sale_documents": refs},
            )

        detached = db.session.execute(
            update(SaleDocument)
            .where(SaleDocument.customer_id == customer_id)
            .values(customer_id=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.execute(
            delete(Customer)
            .where(Customer.id == customer_id)
            .execution_options(synchronize_session=False)
        )

    if detached:
        current_app.logger.warning("Customer %s deleted, %s sale documents detached", customer_id, detached)
    return {"customer_id": customer_id, "sale_documents_detached": detached}
