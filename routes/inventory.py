from flask import Blueprint, request
from flask_login import login_required
from models import db, Product
from errors import ValidationError, NotFoundError
from .decorators import role_required
from .utils import ok, ledger_transaction, log_action, parse_amount, parse_quantity
from .stock_utils import adjust_stock, get_stock

inventory_bp = Blueprint('inventory', __name__, url_prefix='/api/inventory')


@inventory_bp.route('', methods=['GET'])
@login_required
def list_products():
    query = Product.query
    category = request.args.get('category')
    if category:
        query = query.filter(Product.category == category)
    return ok([p.to_dict() for p in query.order_by(Product.name).all()])


@inventory_bp.route('', methods=['POST'])
@login_required
@role_required('Admin', 'Accountant')
def create_product():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError('Product name is required')
    price = parse_amount(data.get('selling_price'), 'Selling price')
    if price < 0:
        raise ValidationError('Selling price cannot be negative')
    quantity = parse_quantity(data.get('quantity') or 0)
    if quantity < 0:
        raise ValidationError('Opening stock cannot be negative')

    with ledger_transaction():
        product = Product(
            name=name,
            category=data.get('category'),
            unit=data.get('unit'),
            selling_price=price,
            quantity=quantity,
            min_stock_level=parse_quantity(data.get('min_stock_level') or 5, 'min_stock_level')
        )
        db.session.add(product)
        db.session.flush()
        log_action(f'Added product {product.name} with opening stock {quantity}.')
    return ok(product.to_dict(), 'Product created', 201)


@inventory_bp.route('/<int:product_id>/adjust', methods=['POST'])
@login_required
@role_required('Admin', 'Accountant')
def adjust(product_id):
    data = request.get_json(silent=True) or {}
    delta = parse_quantity(data.get('adjustment'), 'adjustment')
    reason = (data.get('reason') or '').strip()
    if not reason:
        raise ValidationError('A reason for the adjustment is required.')

    with ledger_transaction():
        if not db.session.get(Product, product_id):
            raise NotFoundError(f'Product {product_id} not found')
        adjust_stock(product_id, delta, reason)
        log_action(f'Adjusted stock for product #{product_id} by {delta}. Reason: {reason}.')
    return ok({'product_id': product_id, 'quantity': get_stock(product_id)}, 'Stock adjusted')


@inventory_bp.route('/<int:product_id>/stock', methods=['GET'])
@login_required
def stock_level(product_id):
    return ok({'product_id': product_id, 'quantity': get_stock(product_id)})


@inventory_bp.route('/alerts/low-stock', methods=['GET'])
@login_required
def low_stock():
    products = Product.query.filter(Product.is_active.is_(True),
                                    Product.quantity <= Product.min_stock_level).all()
    return ok([p.to_dict() for p in products])
