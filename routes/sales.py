from flask import Blueprint, request
from flask_login import login_required
from models import Sale
from .utils import ok, parse_date, parse_quantity
from .settlement_utils import create_sale, update_sale_details, get_sale, serialize_sale

sales_bp = Blueprint('sales', __name__, url_prefix='/api/sales')


@sales_bp.route('', methods=['GET'])
@login_required
def list_sales():
    start_date = parse_date(request.args.get('start_date'), 'start_date')
    end_date = parse_date(request.args.get('end_date'), 'end_date')
    buyer_id = request.args.get('buyer_id')
    include_reversed = request.args.get('include_reversed', 'true').lower() != 'false'

    query = Sale.query
    if start_date:
        query = query.filter(Sale.date >= start_date)
    if end_date:
        query = query.filter(Sale.date <= end_date.replace(hour=23, minute=59, second=59))
    if buyer_id:
        query = query.filter(Sale.buyer_id == parse_quantity(buyer_id, 'buyer_id'))
    if not include_reversed:
        query = query.filter(Sale.is_reversed.is_(False))

    sales = query.order_by(Sale.date.desc(), Sale.id.desc()).all()
    return ok([serialize_sale(s) for s in sales])


@sales_bp.route('/buyer/<int:buyer_id>', methods=['GET'])
@login_required
def sales_by_buyer(buyer_id):
    sales = Sale.query.filter_by(buyer_id=buyer_id).order_by(Sale.date.desc()).all()
    return ok([serialize_sale(s) for s in sales])


@sales_bp.route('/<int:sale_id>', methods=['GET'])
@login_required
def view_sale(sale_id):
    return ok(serialize_sale(get_sale(sale_id)))


@sales_bp.route('', methods=['POST'])
@login_required
def new_sale():
    data = request.get_json(silent=True) or {}
    sale = create_sale(
        items=data.get('items'),
        buyer_id=data.get('buyer_id'),
        customer_name=data.get('customer_name'),
        date=data.get('date'),
        route=data.get('route'),
        notes=data.get('notes')
    )
    return ok(serialize_sale(sale), 'Sale recorded', 201)


@sales_bp.route('/<int:sale_id>', methods=['PUT'])
@login_required
def edit_sale(sale_id):
    data = request.get_json(silent=True) or {}
    sale = update_sale_details(
        sale_id,
        customer_name=data.get('customer_name'),
        route=data.get('route'),
        notes=data.get('notes'),
        date=data.get('date')
    )
    return ok(serialize_sale(sale), 'Sale updated')
