"""
Inventory adjuster.

Stock only ever moves through ``adjust_stock``: each call applies a signed
delta to the product row and records a StockAdjustment in the current
session, so the movement commits or rolls back with the ledger write that
caused it.
"""
from models import db, Product, StockAdjustment
from errors import InsufficientStockError, ValidationError, NotFoundError
from .utils import lock_product, acting_user


def get_stock(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f'Product {product_id} not found')
    return product.quantity


def adjust_stock(product_id, delta, reason, sale_id=None, return_id=None, payment_id=None, user=None):
    """
    Apply ``delta`` to a product's stock.

    Negative deltas consume stock, positive ones restore it. Raises
    InsufficientStockError instead of letting stock go below zero.
    """
    if delta == 0:
        raise ValidationError('Stock adjustment must not be zero')

    product = lock_product(product_id)
    if product.quantity + delta < 0:
        raise InsufficientStockError(
            f'Insufficient stock for {product.name}. '
            f'Available: {product.quantity}, Requested: {-delta}'
        )

    product.quantity += delta
    user = acting_user(user)
    db.session.add(StockAdjustment(
        product_id=product.id,
        quantity_changed=delta,
        reason=reason,
        sale_id=sale_id,
        return_id=return_id,
        payment_id=payment_id,
        user_id=user.id if user else None
    ))
    return product.quantity


def check_stock(demand):
    """
    Validate a {product_id: units} demand against current stock.

    Called before any write so a shortfall never leaves half an operation
    behind. Returns the locked products keyed by id.
    """
    products = {}
    for product_id, units in demand.items():
        product = lock_product(product_id)
        if not product.is_active:
            raise ValidationError(f'Product {product.name} is inactive')
        if units > product.quantity:
            raise InsufficientStockError(
                f'Insufficient stock for {product.name}. '
                f'Available: {product.quantity}, Requested: {units}'
            )
        products[product_id] = product
    return products
