from flask import Blueprint, request, current_app
from flask_login import login_required
from models import Payment
from errors import ValidationError
from .decorators import role_required
from .utils import ok, parse_quantity
from .settlement_utils import (propose_payment, settle_remaining, mark_cheque_cleared, mark_cheque_bounced,
                               remove_payment)
from .report_utils import cheque_alerts, ongoing_pending, shop_payment_history

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


@payments_bp.route('', methods=['GET'])
@login_required
def list_payments():
    query = Payment.query
    sale_id = request.args.get('sale_id')
    if sale_id:
        query = query.filter(Payment.sale_id == parse_quantity(sale_id, 'sale_id'))
    payments = query.order_by(Payment.created_at.desc(), Payment.id.desc()).all()
    return ok([p.to_dict() for p in payments])


@payments_bp.route('', methods=['POST'])
@login_required
def new_payment():
    data = request.get_json(silent=True) or {}
    if data.get('sale_id') in (None, ''):
        raise ValidationError('sale_id is required')
    payment, state = propose_payment(
        parse_quantity(data.get('sale_id'), 'sale_id'),
        data.get('payment_method'),
        cash_amount=data.get('cash_amount'),
        cheque_amount=data.get('cheque_amount'),
        cheque_number=data.get('cheque_number'),
        cheque_bank=data.get('cheque_bank'),
        cheque_expiry_date=data.get('cheque_expiry_date'),
        notes=data.get('notes'),
        free_items=data.get('free_items')
    )
    if payment is None:
        return ok({'payment': None, 'settlement': state}, 'Sale kept open; no payment recorded')
    return ok({'payment': payment.to_dict(), 'settlement': state}, 'Payment recorded', 201)


@payments_bp.route('/settle', methods=['POST'])
@login_required
def settle():
    data = request.get_json(silent=True) or {}
    if data.get('sale_id') in (None, ''):
        raise ValidationError('sale_id is required')
    payment, state = settle_remaining(parse_quantity(data.get('sale_id'), 'sale_id'),
                                      data.get('amount'), data.get('notes'))
    return ok({'payment': payment.to_dict(), 'settlement': state}, 'Payment recorded', 201)


@payments_bp.route('/<int:payment_id>', methods=['DELETE'])
@login_required
@role_required('Admin', 'Accountant')
def delete_payment(payment_id):
    data = request.get_json(silent=True) or {}
    state = remove_payment(payment_id, data.get('reason'))
    return ok({'settlement': state}, 'Payment deleted')


@payments_bp.route('/cheques/<int:payment_id>/status', methods=['PUT'])
@login_required
@role_required('Admin', 'Accountant')
def update_cheque_status(payment_id):
    status = ((request.get_json(silent=True) or {}).get('status') or '').strip().lower()
    if status == 'cleared':
        payment, state = mark_cheque_cleared(payment_id)
    elif status == 'bounced':
        payment, state = mark_cheque_bounced(payment_id)
    else:
        raise ValidationError('Cheque status must be "cleared" or "bounced"')
    return ok({'payment': payment.to_dict(), 'settlement': state}, f'Cheque marked {status}')


@payments_bp.route('/cheque-alerts', methods=['GET'])
@login_required
def get_cheque_alerts():
    return ok(cheque_alerts(within_days=current_app.config['CHEQUE_ALERT_DAYS']))


@payments_bp.route('/ongoing-pending', methods=['GET'])
@login_required
def get_ongoing_pending():
    return ok(ongoing_pending())


@payments_bp.route('/shop-wise/<int:buyer_id>', methods=['GET'])
@login_required
def get_shop_payment_history(buyer_id):
    return ok(shop_payment_history(buyer_id))
