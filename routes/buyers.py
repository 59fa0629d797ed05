from flask import Blueprint, request
from flask_login import login_required
from models import db, Buyer, Sale
from errors import ValidationError, NotFoundError, BuyerInUseError
from .decorators import role_required
from .utils import ok, ledger_transaction, log_action, parse_amount
from .report_utils import shop_summaries

buyers_bp = Blueprint('buyers', __name__, url_prefix='/api/buyers')

EDITABLE_FIELDS = ('shop_name', 'contact', 'address', 'latitude', 'longitude', 'is_active')


def _get_buyer(buyer_id):
    buyer = db.session.get(Buyer, buyer_id)
    if not buyer:
        raise NotFoundError(f'Shop {buyer_id} not found')
    return buyer


def _apply_fields(buyer, data):
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in ('latitude', 'longitude'):
            value = parse_amount(value, field) if value not in (None, '') else None
        elif field == 'is_active':
            value = bool(value)
        elif isinstance(value, str):
            value = value.strip()
        setattr(buyer, field, value)
    if not buyer.shop_name:
        raise ValidationError('Shop name is required')


@buyers_bp.route('', methods=['GET'])
@login_required
def list_buyers():
    buyers = Buyer.query.order_by(Buyer.shop_name).all()
    return ok([b.to_dict() for b in buyers])


@buyers_bp.route('/payment-status', methods=['GET'])
@login_required
def buyers_payment_status():
    return ok(shop_summaries())


@buyers_bp.route('/<int:buyer_id>', methods=['GET'])
@login_required
def view_buyer(buyer_id):
    return ok(_get_buyer(buyer_id).to_dict())


@buyers_bp.route('', methods=['POST'])
@login_required
def create_buyer():
    data = request.get_json(silent=True) or {}
    with ledger_transaction():
        buyer = Buyer()
        _apply_fields(buyer, data)
        db.session.add(buyer)
        db.session.flush()
        log_action(f'Created new shop: {buyer.shop_name}.')
    return ok(buyer.to_dict(), 'Shop created', 201)


@buyers_bp.route('/<int:buyer_id>', methods=['PUT'])
@login_required
def update_buyer(buyer_id):
    data = request.get_json(silent=True) or {}
    with ledger_transaction():
        buyer = _get_buyer(buyer_id)
        _apply_fields(buyer, data)
        log_action(f'Updated shop: {buyer.shop_name}.')
    return ok(buyer.to_dict(), 'Shop updated')


@buyers_bp.route('/<int:buyer_id>', methods=['DELETE'])
@login_required
@role_required('Admin')
def delete_buyer(buyer_id):
    """
    Delete a shop. If sales reference it the caller must pass force=true;
    those sales are then unlinked and keep the shop name as free text.
    """
    force = request.args.get('force', 'false').lower() == 'true'
    with ledger_transaction():
        buyer = _get_buyer(buyer_id)
        sales = Sale.query.filter_by(buyer_id=buyer.id).all()
        if sales and not force:
            raise BuyerInUseError(
                f'{buyer.shop_name} has {len(sales)} sale(s). Confirm with force=true to unlink them and delete.'
            )
        for sale in sales:
            sale.customer_name = sale.customer_name or buyer.shop_name
            sale.buyer_id = None
        log_action(f'Deleted shop: {buyer.shop_name} ({len(sales)} sale(s) unlinked).')
        db.session.delete(buyer)
    return ok({'unlinked_sales': len(sales)}, 'Shop deleted')
