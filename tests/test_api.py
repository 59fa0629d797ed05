import logging

import pytest
from flask_login import FlaskLoginClient
from passlib.hash import pbkdf2_sha256

from app import create_app, seed_essential_data
from config import TestingConfig
from models import db, Sale, Payment, User
from conftest import ADMIN_PASSWORD

CHEQUE = {'cheque_number': 'CHQ-9', 'cheque_bank': 'HNB', 'cheque_expiry_date': '2030-02-28'}


@pytest.fixture
def sale_id(client, buyer, milk):
    res = client.post('/api/sales', json={
        'buyer_id': buyer.id,
        'route': 'North',
        'items': [{'product_id': milk.id, 'quantity': 10, 'unit_price': 100}],
    })
    assert res.status_code == 201
    return res.get_json()['data']['id']


def test_requires_login(app):
    res = app.test_client().get('/api/sales')
    assert res.status_code == 401
    assert res.get_json()['success'] is False


def test_create_sale_envelope(client, buyer, milk):
    res = client.post('/api/sales', json={'buyer_id': buyer.id,
                                          'items': [{'product_id': milk.id, 'quantity': 2}]})
    body = res.get_json()
    assert body['success'] is True
    assert body['data']['total_amount'] == 200.0
    assert body['data']['payment_status'] == 'pending'
    assert body['data']['customer_name'] == 'Lakeside Grocery'
    assert body['data']['items'][0]['unit_price'] == 100.0


def test_insufficient_stock_error_envelope(client, milk):
    res = client.post('/api/sales', json={'items': [{'product_id': milk.id, 'quantity': 51}]})
    assert res.status_code == 409
    body = res.get_json()
    assert body == {'success': False, 'error': 'InsufficientStockError', 'message': body['message']}
    assert 'Available: 50' in body['message']


def test_payment_flow(client, sale_id):
    res = client.post('/api/payments', json={'sale_id': sale_id, 'payment_method': 'cash', 'cash_amount': 600})
    assert res.status_code == 201
    assert res.get_json()['data']['settlement']['status'] == 'ongoing'

    res = client.post('/api/payments', json=dict(CHEQUE, sale_id=sale_id, payment_method='cheque',
                                                 cheque_amount=400))
    assert res.status_code == 201
    settlement = res.get_json()['data']['settlement']
    assert settlement['status'] == 'paid'
    assert settlement['pending_cheque'] == 400.0

    res = client.get(f'/api/sales/{sale_id}')
    assert res.get_json()['data']['payment_status'] == 'paid'


def test_overpayment_is_409(client, sale_id):
    res = client.post('/api/payments', json={'sale_id': sale_id, 'payment_method': 'cash', 'cash_amount': 1100})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'OverpaymentError'
    assert Payment.query.count() == 0


def test_missing_cheque_details(client, sale_id):
    res = client.post('/api/payments', json={'sale_id': sale_id, 'payment_method': 'cheque',
                                             'cheque_amount': 100, 'cheque_expiry_date': '2030-01-01'})
    assert res.status_code == 400
    assert res.get_json()['error'] == 'MissingChequeDetailError'


def test_ongoing_zero_keeps_sale_open(client, sale_id):
    res = client.post('/api/payments', json={'sale_id': sale_id, 'payment_method': 'ongoing', 'cash_amount': 0})
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['payment'] is None
    assert data['settlement']['status'] == 'pending'


def test_settle_endpoint(client, sale_id):
    client.post('/api/payments', json={'sale_id': sale_id, 'payment_method': 'ongoing', 'cash_amount': 250})
    res = client.post('/api/payments/settle', json={'sale_id': sale_id, 'amount': 750})
    assert res.status_code == 201
    assert res.get_json()['data']['settlement']['status'] == 'paid'

    res = client.get('/api/payments/ongoing-pending')
    assert res.get_json()['data'] == []


def test_cheque_status_needs_accounts_role(client, rep_client, sale_id):
    res = client.post('/api/payments', json=dict(CHEQUE, sale_id=sale_id, payment_method='cheque',
                                                 cheque_amount=1000))
    payment_id = res.get_json()['data']['payment']['id']

    res = rep_client.put(f'/api/payments/cheques/{payment_id}/status', json={'status': 'bounced'})
    assert res.status_code == 403

    res = client.put(f'/api/payments/cheques/{payment_id}/status', json={'status': 'bounced'})
    assert res.status_code == 200
    assert res.get_json()['data']['settlement']['pending_amount'] == 1000.0

    res = client.put(f'/api/payments/cheques/{payment_id}/status', json={'status': 'cleared'})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'ChequeStateError'


def test_unknown_cheque_status(client, sale_id):
    res = client.post('/api/payments', json=dict(CHEQUE, sale_id=sale_id, payment_method='cheque',
                                                 cheque_amount=100))
    payment_id = res.get_json()['data']['payment']['id']
    res = client.put(f'/api/payments/cheques/{payment_id}/status', json={'status': 'lost'})
    assert res.status_code == 400


def test_delete_payment(client, sale_id):
    res = client.post('/api/payments', json={'sale_id': sale_id, 'payment_method': 'cash', 'cash_amount': 300})
    payment_id = res.get_json()['data']['payment']['id']
    res = client.delete(f'/api/payments/{payment_id}', json={'reason': 'Wrong shop'})
    assert res.status_code == 200
    assert res.get_json()['data']['settlement']['pending_amount'] == 1000.0


def test_return_endpoint(client, sale_id, milk):
    res = client.post('/api/returns', json={'original_sale_id': sale_id,
                                            'items': [{'product_id': milk.id, 'quantity': 3}]})
    assert res.status_code == 201
    assert res.get_json()['data']['items'][0]['unit_price'] == 100.0

    res = client.post('/api/returns', json={'original_sale_id': sale_id,
                                            'items': [{'product_id': milk.id, 'quantity': 8}]})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'ExcessReturnError'

    res = client.get(f'/api/returns?sale_id={sale_id}')
    assert len(res.get_json()['data']) == 1


def test_reverse_endpoint(client, sale_id, milk):
    res = client.post(f'/api/sales/{sale_id}/reverse', json={'password': 'wrong'})
    assert res.status_code == 403
    assert res.get_json()['error'] == 'Unauthorized'

    res = client.post(f'/api/sales/{sale_id}/reverse', json={'password': ADMIN_PASSWORD, 'reason': 'Duplicate'})
    assert res.status_code == 200
    data = res.get_json()['data']
    assert data['is_reversed'] is True
    assert data['reversal_reason'] == 'Duplicate'
    assert db.session.get(Sale, sale_id).is_reversed is True

    res = client.post(f'/api/sales/{sale_id}/reverse', json={'password': ADMIN_PASSWORD})
    assert res.status_code == 409
    assert res.get_json()['error'] == 'AlreadyReversedError'

    res = client.get('/api/sales?include_reversed=false')
    assert res.get_json()['data'] == []


def test_salesperson_can_reverse_with_approver_password(rep_client, sale_id, admin):
    res = rep_client.post(f'/api/sales/{sale_id}/reverse', json={'password': ADMIN_PASSWORD})
    assert res.status_code == 200


def test_edit_sale_header(client, sale_id):
    res = client.put(f'/api/sales/{sale_id}', json={'route': 'South'})
    data = res.get_json()['data']
    assert data['route'] == 'South'
    assert data['is_edited'] is True


def test_reports_are_restricted(client, rep_client, sale_id):
    assert rep_client.get('/api/reports/shops').status_code == 403
    res = client.get('/api/reports/shops')
    assert res.status_code == 200
    assert res.get_json()['data'][0]['status'] == 'pending'


def test_stock_adjustment_endpoint(client, milk):
    res = client.post(f'/api/inventory/{milk.id}/adjust', json={'adjustment': -5, 'reason': 'Spoiled'})
    assert res.get_json()['data']['quantity'] == 45

    res = client.post(f'/api/inventory/{milk.id}/adjust', json={'adjustment': -46, 'reason': 'Count'})
    assert res.status_code == 409

    res = client.get(f'/api/inventory/{milk.id}/stock')
    assert res.get_json()['data'] == {'product_id': milk.id, 'quantity': 45}
    assert client.get('/api/inventory/999/stock').status_code == 404


class RateLimitedConfig(TestingConfig):
    RATELIMIT_ENABLED = True
    REVERSAL_RATE_LIMIT = '2 per minute'


def test_reversal_attempts_are_rate_limited():
    app = create_app(RateLimitedConfig)
    app.test_client_class = FlaskLoginClient
    with app.app_context():
        db.create_all()
        user = User(username='admin', password_hash=pbkdf2_sha256.hash(ADMIN_PASSWORD), role='Admin')
        db.session.add(user)
        db.session.commit()
        client = app.test_client(user=user)
        codes = [client.post('/api/sales/1/reverse', json={'password': 'guess'}).status_code for _ in range(3)]
        db.session.remove()
        db.drop_all()
    assert codes == [403, 403, 429]


def test_seed_creates_admin_once(app, caplog):
    caplog.set_level(logging.INFO, logger=app.logger.name)
    seed_essential_data(app)
    seed_essential_data(app)
    assert User.query.filter_by(role='Admin').count() == 1
    assert 'Admin user created' in caplog.text
