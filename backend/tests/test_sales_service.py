from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from conftest import bill_payload, line
from goldbill.errors import (
    InsufficientStock,
    InvalidDiscount,
    InvalidExchangeInput,
    InvalidLineItem,
    NotFound,
    PersistenceFailure,
    TransactionTimeout,
    ValidationError,
)
from goldbill.extensions import db
from goldbill.models import DocumentSequence, LineItem, Product, SaleDocument, StockLedgerEntry
from goldbill.models.inventory import TX_SALE_OUT
from goldbill.services import products_service, sales_service, stock_ledger_service
from goldbill.services.calculations import round2
from goldbill.time_utils import utcnow


def _stock(product_id):
    return db.session.query(Product.stock_quantity).filter_by(id=product_id).scalar()


def _sale_entries(product_id=None):
    q = db.session.query(StockLedgerEntry).filter_by(transaction_type=TX_SALE_OUT)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    return q.order_by(StockLedgerEntry.id.asc()).all()


def _assert_nothing_persisted():
    assert db.session.query(SaleDocument).count() == 0
    assert db.session.query(LineItem).count() == 0
    assert _sale_entries() == []


# --- Simple bill ---

def test_bill_deducts_stock_and_writes_ledger(db_session, ring):
    doc = sales_service.create_sale_document(
        bill_payload(items=[line(ring.id, weight="10", rate="5000", making_charge="300", quantity=2)])
    )

    assert doc.subtotal == Decimal("100600")
    assert doc.tax_amount == Decimal("0")
    assert doc.discount_amount == Decimal("0")
    assert doc.total_amount == Decimal("100600")
    assert doc.document_number == f"BILL-{utcnow().year}-000001"
    assert doc.payment_status == "pending"
    assert doc.amount_paid == Decimal("0")

    assert len(doc.items) == 1
    assert doc.items[0].total == Decimal("100600")
    assert doc.items[0].product_name == "Gold Ring 22K"

    assert _stock(ring.id) == 3
    entries = _sale_entries(ring.id)
    assert len(entries) == 1
    assert entries[0].stock_before == 5
    assert entries[0].quantity_delta == -2
    assert entries[0].stock_after == 3
    assert entries[0].document_id == doc.id
    assert entries[0].document_number == doc.document_number
    assert entries[0].reason == "Sale"
    assert [e.id for e in doc.ledger_entries] == [entries[0].id]


def test_client_supplied_totals_are_ignored(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id, quantity=2, total="1")],
        subtotal="1",
        tax_amount="1",
        total_amount="1",
    ))
    assert doc.total_amount == Decimal("100600")


def test_discount_percentage_and_tax(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id, quantity=2)],
        discount_percentage="10",
        tax_percentage="3",
    ))
    assert doc.discount_amount == Decimal("10060.00")
    # (100600 - 10060) * 3% = 2716.20
    assert doc.tax_amount == Decimal("2716.20")
    assert doc.total_amount == Decimal("93256.20")
    assert doc.total_amount == doc.subtotal - doc.discount_amount + doc.tax_amount


def test_discount_amount_records_equivalent_percentage(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id, weight="1", rate="1000", making_charge="0")],
        discount_amount="250",
    ))
    assert doc.discount_percentage == Decimal("25.00")
    assert doc.total_amount == Decimal("750.00")


# --- Insufficient stock ---

def test_insufficient_stock_persists_nothing(db_session, ring):
    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(ring.id, quantity=6)]))

    assert exc.value.details["product_id"] == ring.id
    assert exc.value.details["available"] == 5
    assert exc.value.details["required"] == 6
    assert exc.value.details["product_name"] == "Gold Ring 22K"
    assert _stock(ring.id) == 5
    _assert_nothing_persisted()


def test_last_unit_cannot_cover_two(db_session, make_product):
    pendant = make_product(name="Temple Pendant", stock=1)
    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(pendant.id, quantity=2)]))
    assert (exc.value.available, exc.value.required) == (1, 2)
    assert _stock(pendant.id) == 1
    _assert_nothing_persisted()


def test_quantities_for_the_same_product_are_summed(db_session, ring):
    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale_document(bill_payload(items=[
            line(ring.id, quantity=3),
            line(ring.id, quantity=3),
        ]))
    assert exc.value.details["required"] == 6
    assert _stock(ring.id) == 5
    _assert_nothing_persisted()


def test_bill_can_sell_the_last_unit(db_session, ring):
    sales_service.create_sale_document(bill_payload(items=[line(ring.id, quantity=5)]))
    assert _stock(ring.id) == 0


# --- Exchange bill ---

def test_exchange_customer_owes_the_difference(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        variant="EXCHANGE_BILL",
        items=[line(ring.id, weight="10", rate="6000", making_charge="0")],
        old_material_weight="10",
        old_material_rate="5000",
        old_material_purity="22K",
    ))

    assert doc.document_number.startswith(f"EXB-{utcnow().year}-")
    assert doc.total_amount == Decimal("60000")
    assert doc.old_material_value == Decimal("50000")
    assert doc.exchange_difference == Decimal("10000")
    assert doc.payment_status == "pending"
    assert doc.amount_paid == Decimal("0")
    assert doc.old_material_purity == "22K"
    assert _stock(ring.id) == 4


def test_exchange_shop_owes_the_customer(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        variant="EXCHANGE_BILL",
        items=[line(ring.id, weight="10", rate="4000", making_charge="0")],
        old_material_weight="10",
        old_material_rate="5000",
    ))

    assert doc.exchange_difference == Decimal("-10000")
    assert doc.payment_status == "paid"
    assert doc.amount_paid == Decimal("10000")
    assert _stock(ring.id) == 4


def test_exchange_partial_payment_is_kept(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        variant="EXCHANGE_BILL",
        items=[line(ring.id, weight="10", rate="6000", making_charge="0")],
        old_material_weight="10",
        old_material_rate="5000",
        amount_paid="4000",
    ))

    assert doc.exchange_difference == Decimal("10000")
    assert doc.payment_status == "partial"
    assert doc.amount_paid == Decimal("4000")


def test_exchange_payment_above_difference_is_rejected(db_session, ring):
    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale_document(bill_payload(
            variant="EXCHANGE_BILL",
            items=[line(ring.id, weight="10", rate="6000", making_charge="0")],
            old_material_weight="10",
            old_material_rate="5000",
            amount_paid="12000",
        ))
    assert exc.value.field == "amount_paid"
    assert exc.value.details["amount_due"] == "10000.00"
    assert _stock(ring.id) == 5
    _assert_nothing_persisted()


@pytest.mark.parametrize("extra,field", [
    ({"old_material_rate": "5000"}, "old_material_weight"),
    ({"old_material_weight": "10"}, "old_material_rate"),
    ({"old_material_weight": "0", "old_material_rate": "5000"}, "old_material_weight"),
    ({"old_material_weight": "10", "old_material_rate": "-1"}, "old_material_rate"),
    ({"old_material_weight": "10", "old_material_rate": "5000.12345"}, "old_material_rate"),
    ({"old_material_weight": "1.2345", "old_material_rate": "5000"}, "old_material_weight"),
])
def test_exchange_requires_valid_old_material(db_session, ring, extra, field):
    with pytest.raises(InvalidExchangeInput) as exc:
        sales_service.create_sale_document(bill_payload(
            variant="EXCHANGE_BILL", items=[line(ring.id)], **extra
        ))
    assert exc.value.field == field
    assert _stock(ring.id) == 5


# --- Discount over subtotal ---

def test_discount_over_subtotal_is_rejected(db_session, ring):
    with pytest.raises(InvalidDiscount):
        sales_service.create_sale_document(bill_payload(
            items=[line(ring.id, weight="1", rate="1000", making_charge="0")],
            discount_amount="1500",
        ))
    assert _stock(ring.id) == 5
    _assert_nothing_persisted()


# --- Invoice variant ---

def test_invoice_never_touches_stock(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        variant="INVOICE",
        items=[line(ring.id, quantity=50)],
    ))
    assert doc.document_number == f"INV-{utcnow().year}-000001"
    assert _stock(ring.id) == 5
    assert _sale_entries() == []


def test_invoice_may_be_empty(db_session):
    doc = sales_service.create_sale_document(bill_payload(variant="INVOICE", items=[]))
    assert doc.subtotal == Decimal("0")
    assert doc.total_amount == Decimal("0")
    assert doc.items == []


def test_invoice_may_quote_inactive_product(db_session, ring):
    products_service.deactivate_product(ring.id)
    doc = sales_service.create_sale_document(bill_payload(variant="INVOICE", items=[line(ring.id)]))
    assert doc.items[0].product_id == ring.id


# --- Validation before any write ---

@pytest.mark.parametrize("payload,field", [
    ({"variant": "BILL", "customer_name": "A", "items": []}, "items"),
    ({"variant": "EXCHANGE_BILL", "customer_name": "A"}, "items"),
    ({"variant": "RECEIPT", "customer_name": "A", "items": []}, "variant"),
    ({"customer_name": "A", "items": []}, "variant"),
    ({"variant": "INVOICE", "items": []}, "customer_name"),
    ({"variant": "INVOICE", "customer_name": "A", "payment_status": "settled"}, "payment_status"),
    ({"variant": "INVOICE", "customer_name": "A", "amount_paid": "-5"}, "amount_paid"),
    ({"variant": "INVOICE", "customer_name": "A", "tax_percentage": "-1"}, "tax_percentage"),
    ({"variant": "INVOICE", "customer_name": "A", "tax_percentage": "3.333"}, "tax_percentage"),
    ({"variant": "INVOICE", "customer_name": "A", "amount_paid": "10.005"}, "amount_paid"),
    ({"variant": "INVOICE", "customer_name": "A", "discount_percentage": "2.555"}, "discount_percentage"),
    ({"variant": "INVOICE", "customer_name": "A", "created_at": "yesterday"}, "created_at"),
])
def test_request_validation(db_session, payload, field):
    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale_document(payload)
    assert exc.value.field == field
    _assert_nothing_persisted()


@pytest.mark.parametrize("item,field", [
    ({"weight": "0"}, "items[0].weight"),
    ({"rate": "-5"}, "items[0].rate"),
    ({"making_charge": "-1"}, "items[0].making_charge"),
    ({"rate": "5000.12345"}, "items[0].rate"),
    ({"weight": "1.2345"}, "items[0].weight"),
    ({"wastage_charge": "0.001"}, "items[0].wastage_charge"),
    ({"quantity": 0}, "items[0].quantity"),
    ({"quantity": "1.5"}, "items[0].quantity"),
])
def test_line_item_validation_names_the_field(db_session, ring, item, field):
    with pytest.raises(InvalidLineItem) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(ring.id, **item)]))
    assert exc.value.field == field
    assert _stock(ring.id) == 5


def test_manual_line_requires_a_name(db_session):
    with pytest.raises(InvalidLineItem) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(None)]))
    assert exc.value.field == "items[0].product_name"


def test_manual_line_is_billed_without_stock_movement(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(items=[
        line(None, product_name="Custom pendant", weight="2", rate="5500", making_charge="800"),
        line(ring.id),
    ]))
    assert [item.product_name for item in doc.items] == ["Custom pendant", "Gold Ring 22K"]
    assert doc.items[0].product_id is None
    assert len(_sale_entries()) == 1
    assert _stock(ring.id) == 4


def test_unknown_product_is_rejected(db_session):
    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(424242)]))
    assert exc.value.field == "items[0].product_id"
    _assert_nothing_persisted()


def test_inactive_product_cannot_be_billed(db_session, ring):
    products_service.deactivate_product(ring.id)
    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(ring.id)]))
    assert exc.value.field == "items[0].product_id"
    assert _stock(ring.id) == 5


# --- Atomicity ---

def test_failure_on_third_deduction_rolls_back_everything(db_session, make_product, monkeypatch):
    products = [make_product(name=f"Bangle {i}", stock=5) for i in range(3)]
    product_ids = [p.id for p in products]

    original = stock_ledger_service.deduct
    calls = []

    def failing_deduct(product_id, quantity, reason, **kwargs):
        calls.append(product_id)
        if len(calls) == 3:
            raise InsufficientStock(product_id=product_id, available=0, required=quantity)
        return original(product_id, quantity, reason, **kwargs)

    monkeypatch.setattr(stock_ledger_service, "deduct", failing_deduct)

    with pytest.raises(InsufficientStock):
        sales_service.create_sale_document(bill_payload(
            items=[line(pid, quantity=2) for pid in product_ids],
        ))

    assert calls == product_ids
    assert [_stock(pid) for pid in product_ids] == [5, 5, 5]
    _assert_nothing_persisted()
    assert db.session.query(DocumentSequence).count() == 0


def test_stock_drained_after_check_is_caught_at_ledger_time(db_session, ring, monkeypatch):
    ring_id = ring.id
    original = sales_service._check_stock

    def check_then_drain(request):
        products = original(request)
        # A concurrent sale takes the last units between check and ledger write
        db.session.execute(
            update(Product)
            .where(Product.id == ring_id)
            .values(stock_quantity=0)
            .execution_options(synchronize_session=False)
        )
        return products

    monkeypatch.setattr(sales_service, "_check_stock", check_then_drain)

    with pytest.raises(InsufficientStock) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(ring_id, quantity=2)]))

    assert exc.value.available == 0
    assert exc.value.required == 2
    _assert_nothing_persisted()
    assert _stock(ring_id) == 5


def test_lock_timeout_surfaces_as_retryable_failure(db_session, ring, monkeypatch):
    def locked(*args, **kwargs):
        raise OperationalError("UPDATE products", {}, Exception("database is locked"))

    monkeypatch.setattr(stock_ledger_service, "deduct", locked)

    with pytest.raises(TransactionTimeout) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(ring.id)]))

    assert exc.value.details["retryable"] is True
    assert _stock(ring.id) == 5
    _assert_nothing_persisted()


def test_failed_sale_does_not_consume_a_document_number(db_session, ring):
    with pytest.raises(InsufficientStock):
        sales_service.create_sale_document(bill_payload(items=[line(ring.id, quantity=9)]))
    doc = sales_service.create_sale_document(bill_payload(items=[line(ring.id)]))
    assert doc.document_number.endswith("-000001")


# --- Numbering and idempotency ---

def test_document_numbers_are_sequential_per_variant(db_session, ring):
    first = sales_service.create_sale_document(bill_payload(items=[line(ring.id)]))
    second = sales_service.create_sale_document(bill_payload(items=[line(ring.id)]))
    quote = sales_service.create_sale_document(bill_payload(variant="INVOICE", items=[line(ring.id)]))

    year = utcnow().year
    assert first.document_number == f"BILL-{year}-000001"
    assert second.document_number == f"BILL-{year}-000002"
    assert quote.document_number == f"INV-{year}-000001"


def test_imported_created_at_drives_the_number_year(db_session):
    doc = sales_service.create_sale_document(bill_payload(
        variant="INVOICE",
        created_at="2024-03-01T10:00:00Z",
    ))
    assert doc.document_number == "INV-2024-000001"
    assert doc.created_at.year == 2024


def test_duplicate_idempotency_key_fails_without_second_deduction(db_session, ring):
    sales_service.create_sale_document(bill_payload(items=[line(ring.id)]), idempotency_key="till-7-0001")

    with pytest.raises(PersistenceFailure):
        sales_service.create_sale_document(bill_payload(items=[line(ring.id)]), idempotency_key="till-7-0001")

    assert db.session.query(SaleDocument).count() == 1
    assert _stock(ring.id) == 4


# --- Customer and payment ---

def test_customer_directory_fills_snapshot(db_session, ring, customer):
    doc = sales_service.create_sale_document({
        "variant": "BILL",
        "customer_id": customer.id,
        "items": [line(ring.id)],
    })
    assert doc.customer_id == customer.id
    assert doc.customer_name == "Asha Verma"
    assert doc.customer_phone == "9876543210"


def test_unknown_customer_is_rejected(db_session, ring):
    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale_document({"variant": "BILL", "customer_id": 9999, "items": [line(ring.id)]})
    assert exc.value.field == "customer_id"
    assert _stock(ring.id) == 5


def test_payment_status_is_derived_from_amount_paid(db_session, ring):
    partial = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id, quantity=2)], amount_paid="50000", payment_method="cash",
    ))
    assert partial.payment_status == "partial"
    assert partial.amount_paid == Decimal("50000")

    paid = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id)], payment_status="paid",
    ))
    assert paid.payment_status == "paid"
    assert paid.amount_paid == paid.total_amount


def test_overpayment_is_rejected(db_session, ring):
    with pytest.raises(ValidationError) as exc:
        sales_service.create_sale_document(bill_payload(items=[line(ring.id)], amount_paid="999999"))
    assert exc.value.field == "amount_paid"
    assert _stock(ring.id) == 5


# --- Stored values reproduce the totals ---

def _reload(doc_id):
    db.session.expire_all()
    return db.session.get(SaleDocument, doc_id)


def test_stored_tax_percentage_reproduces_tax_amount(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id, weight="2", rate="5000", making_charge="0")],
        tax_percentage="3.33",
    ))

    stored = _reload(doc.id)
    assert stored.tax_percentage == Decimal("3.33")
    assert stored.tax_amount == Decimal("333.00")
    taxable = stored.subtotal - stored.discount_amount
    assert round2(taxable * stored.tax_percentage / 100) == stored.tax_amount


def test_stored_line_keeps_fine_rate(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        items=[line(ring.id, weight="10", rate="5000.125", making_charge="0")],
    ))

    item = _reload(doc.id).items[0]
    assert item.rate == Decimal("5000.125")
    assert item.total == Decimal("50001.25")
    assert (item.weight * item.rate + item.making_charge + item.wastage_charge) * item.quantity == item.total
    assert _reload(doc.id).subtotal == Decimal("50001.25")


def test_stored_exchange_keeps_fine_old_material_rate(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(
        variant="EXCHANGE_BILL",
        items=[line(ring.id, weight="10", rate="6000", making_charge="0")],
        old_material_weight="2.5",
        old_material_rate="4000.0625",
    ))

    stored = _reload(doc.id)
    assert stored.old_material_rate == Decimal("4000.0625")
    assert round2(stored.old_material_weight * stored.old_material_rate) == stored.old_material_value
    assert stored.exchange_difference == stored.total_amount - stored.old_material_value


def test_update_payment(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(items=[line(ring.id)]))

    updated = sales_service.update_payment(doc.id, "paid", "50300")
    assert updated.payment_status == "paid"
    assert updated.amount_paid == Decimal("50300")
    assert updated.total_amount == Decimal("50300")

    with pytest.raises(ValidationError):
        sales_service.update_payment(doc.id, "settled", "1")
    with pytest.raises(ValidationError):
        sales_service.update_payment(doc.id, "paid", "-1")
    with pytest.raises(ValidationError):
        sales_service.update_payment(doc.id, "paid", "10.005")
    with pytest.raises(NotFound):
        sales_service.update_payment(doc.id + 1000, "paid", "1")


# --- Reads and explicit delete ---

def test_list_and_search_documents(db_session, ring):
    bill = sales_service.create_sale_document(bill_payload(items=[line(ring.id)], customer_name="Ravi Kumar"))
    sales_service.create_sale_document(bill_payload(variant="INVOICE", items=[line(ring.id)]))

    assert [d.id for d in sales_service.list_sale_documents(variant="bill")] == [bill.id]
    assert [d.id for d in sales_service.list_sale_documents(search="ravi")] == [bill.id]
    assert len(sales_service.list_sale_documents()) == 2

    with pytest.raises(ValidationError):
        sales_service.list_sale_documents(variant="RECEIPT")


def test_delete_sale_document_detaches_ledger_entries(db_session, ring):
    doc = sales_service.create_sale_document(bill_payload(items=[line(ring.id, quantity=2)]))
    doc_id, number = doc.id, doc.document_number

    result = sales_service.delete_sale_document(doc_id)

    assert result == {
        "document_id": doc_id,
        "document_number": number,
        "items_deleted": 1,
        "ledger_entries_detached": 1,
    }
    with pytest.raises(NotFound):
        sales_service.get_sale_document(doc_id)

    entry = _sale_entries(ring.id)[0]
    assert entry.document_id is None
    assert entry.document_number == number
    assert _stock(ring.id) == 3
    assert stock_ledger_service.replay_stock(ring.id)["consistent"] is True


def test_delete_missing_document(db_session):
    with pytest.raises(NotFound):
        sales_service.delete_sale_document(12345)
