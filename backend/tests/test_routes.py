"""
HTTP surface: status codes and error bodies for each failure kind.
"""

from decimal import Decimal

from conftest import bill_payload, line


def test_health(client, db_session):
    response = client.get('/api/system/health')
    assert response.status_code == 200
    assert response.json['status'] == 'healthy'


def test_create_bill(client, db_session, ring):
    response = client.post('/api/sales', json=bill_payload(items=[line(ring.id, quantity=2)]))

    assert response.status_code == 201
    document = response.json['document']
    assert Decimal(document['total_amount']) == Decimal('100600')
    assert document['variant'] == 'BILL'
    assert len(document['items']) == 1
    assert document['items'][0]['product_name'] == 'Gold Ring 22K'

    entries = document['ledger_entries']
    assert len(entries) == 1
    assert entries[0]['product_id'] == ring.id
    assert entries[0]['quantity_delta'] == -2
    assert entries[0]['stock_before'] == 5
    assert entries[0]['stock_after'] == 3
    assert entries[0]['document_number'] == document['document_number']

    product = client.get(f'/api/products/{ring.id}').json['product']
    assert product['stock_quantity'] == 3


def test_idempotency_key_header_is_stored_and_enforced(client, db_session, ring):
    headers = {'Idempotency-Key': 'till-1-0042'}
    first = client.post('/api/sales', json=bill_payload(items=[line(ring.id)]), headers=headers)
    assert first.status_code == 201
    assert first.json['document']['idempotency_key'] == 'till-1-0042'

    replay = client.post('/api/sales', json=bill_payload(items=[line(ring.id)]), headers=headers)
    assert replay.status_code == 503
    assert replay.json['details']['retryable'] is True


def test_insufficient_stock_is_409(client, db_session, ring):
    response = client.post('/api/sales', json=bill_payload(items=[line(ring.id, quantity=6)]))

    assert response.status_code == 409
    assert response.json['details']['available'] == 5
    assert response.json['details']['required'] == 6


def test_validation_error_is_400_and_names_field(client, db_session, ring):
    response = client.post('/api/sales', json=bill_payload(items=[line(ring.id, weight='-1')]))
    assert response.status_code == 400
    assert response.json['details']['field'] == 'items[0].weight'

    response = client.post('/api/sales', json=bill_payload(
        items=[line(ring.id, weight='1', rate='1000', making_charge='0')],
        discount_amount='1500',
    ))
    assert response.status_code == 400
    assert response.json['details']['field'] == 'discount_amount'


def test_exchange_bill_response_carries_differential(client, db_session, ring):
    response = client.post('/api/sales', json=bill_payload(
        variant='EXCHANGE_BILL',
        items=[line(ring.id, weight='10', rate='4000', making_charge='0')],
        old_material_weight='10',
        old_material_rate='5000',
    ))
    assert response.status_code == 201
    document = response.json['document']
    assert Decimal(document['exchange_difference']) == Decimal('-10000')
    assert document['payment_status'] == 'paid'


def test_get_list_and_update_payment(client, db_session, ring):
    created = client.post('/api/sales', json=bill_payload(items=[line(ring.id)])).json['document']

    fetched = client.get(f"/api/sales/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json['document']['document_number'] == created['document_number']

    listed = client.get('/api/sales?variant=BILL')
    assert listed.status_code == 200
    assert listed.json['count'] == 1

    assert client.get('/api/sales?start_date=not-a-date').status_code == 400
    assert client.get('/api/sales/999999').status_code == 404

    paid = client.patch(f"/api/sales/{created['id']}/payment", json={'payment_status': 'paid', 'amount_paid': '50300'})
    assert paid.status_code == 200
    assert paid.json['document']['payment_status'] == 'paid'

    missing = client.patch(f"/api/sales/{created['id']}/payment", json={'payment_status': 'paid'})
    assert missing.status_code == 400


def test_delete_sale_document(client, db_session, ring):
    created = client.post('/api/sales', json=bill_payload(items=[line(ring.id)])).json['document']

    response = client.delete(f"/api/sales/{created['id']}")
    assert response.status_code == 200
    assert response.json['ledger_entries_detached'] == 1
    assert client.get(f"/api/sales/{created['id']}").status_code == 404


def test_inventory_adjust_and_verify(client, db_session, ring):
    response = client.post('/api/inventory/adjust', json={
        'product_id': ring.id,
        'quantity_delta': -2,
        'reason': 'Sent for polishing',
    })
    assert response.status_code == 201
    assert response.json['entry']['stock_after'] == 3

    too_many = client.post('/api/inventory/adjust', json={
        'product_id': ring.id,
        'quantity_delta': -10,
        'reason': 'Lost',
    })
    assert too_many.status_code == 409

    no_reason = client.post('/api/inventory/adjust', json={'product_id': ring.id, 'quantity_delta': 1})
    assert no_reason.status_code == 400
    assert no_reason.json['details']['field'] == 'reason'

    verify = client.get(f'/api/inventory/products/{ring.id}/verify')
    assert verify.status_code == 200
    assert verify.json['consistent'] is True
    assert verify.json['stock_quantity'] == 3

    transactions = client.get(f'/api/inventory/transactions?product_id={ring.id}&transaction_type=adjustment')
    assert transactions.json['count'] == 1


def test_low_stock(client, db_session, make_product):
    make_product(name='Toe Ring', stock=0, min_stock_level=1)
    response = client.get('/api/inventory/low-stock')
    assert response.status_code == 200
    assert [p['name'] for p in response.json['products']] == ['Toe Ring']


def test_product_delete_conflict_then_cascade(client, db_session, ring):
    client.post('/api/sales', json=bill_payload(items=[line(ring.id)]))

    conflict = client.delete(f'/api/products/{ring.id}')
    assert conflict.status_code == 409
    assert conflict.json['details']['line_items'] == 1

    cascaded = client.delete(f'/api/products/{ring.id}?cascade=1')
    assert cascaded.status_code == 200
    assert cascaded.json['line_items_detached'] == 1


def test_product_and_customer_creation(client, db_session):
    product = client.post('/api/products', json={'name': 'Silver Chain', 'material_type': 'Silver', 'stock_quantity': 4})
    assert product.status_code == 201
    assert product.json['product']['stock_quantity'] == 4

    bad = client.post('/api/products', json={'name': ''})
    assert bad.status_code == 400

    customer = client.post('/api/customers', json={'name': 'Meera Shah', 'phone': '9000000001'})
    assert customer.status_code == 201

    deleted = client.delete(f"/api/customers/{customer.json['customer']['id']}")
    assert deleted.status_code == 200


def test_deactivate_blocks_billing(client, db_session, ring):
    assert client.post(f'/api/products/{ring.id}/deactivate').status_code == 200

    response = client.post('/api/sales', json=bill_payload(items=[line(ring.id)]))
    assert response.status_code == 400
    assert response.json['details']['field'] == 'items[0].product_id'


def test_inventory_overview(client, db_session, ring, make_product):
    make_product(name='Gold Chain', stock=2, min_stock_level=3, current_rate='6200.50')
    client.post('/api/sales', json=bill_payload(items=[line(ring.id, quantity=2)]))

    response = client.get('/api/inventory/overview')
    assert response.status_code == 200
    assert response.json['total_products'] == 2
    assert response.json['total_stock'] == 5
    assert response.json['low_stock_count'] == 1
    assert Decimal(response.json['total_value']) == Decimal('12401.00')
