"""
Return adjuster.

A return puts sold units back into stock and can hand out a replacement
product in exchange. Returns never refund a payment; they only lower the
amount the settlement engine still considers owed.
"""
from collections import defaultdict
from datetime import datetime
from models import db, Return, ReturnItem, Product
from errors import ValidationError, NotFoundError, ExcessReturnError, AlreadyReversedError
from .utils import ledger_transaction, lock_sale, log_action, acting_user, parse_quantity, parse_date
from .stock_utils import adjust_stock, check_stock


def sold_quantities(sale):
    sold = defaultdict(int)
    for item in sale.items:
        sold[item.product_id] += item.quantity
    return sold


def returned_quantities(sale):
    returned = defaultdict(int)
    for ret in sale.returns:
        for item in ret.items:
            returned[item.product_id] += item.quantity
    return returned


def returnable_quantities(sale):
    """Units per product that can still be returned: sold minus returned."""
    sold = sold_quantities(sale)
    returned = returned_quantities(sale)
    return {product_id: qty - returned[product_id] for product_id, qty in sold.items()}


def _unit_prices(sale):
    # First sold price wins when a product appears on several lines.
    prices = {}
    for item in sale.items:
        prices.setdefault(item.product_id, item.unit_price)
    return prices


def _parse_return_items(items):
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError('A return needs at least one item')

    lines = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict) or raw.get('product_id') in (None, ''):
            raise ValidationError(f'Item {index}: product is required')
        product_id = parse_quantity(raw.get('product_id'), f'Item {index} product')
        quantity = parse_quantity(raw.get('quantity'), f'Item {index} quantity')
        if quantity <= 0:
            raise ValidationError(f'Item {index}: quantity must be greater than 0')

        replacement_id = None
        replacement_qty = 0
        if raw.get('replacement_product_id') not in (None, ''):
            replacement_id = parse_quantity(raw.get('replacement_product_id'), f'Item {index} replacement product')
            if raw.get('replacement_quantity') in (None, ''):
                replacement_qty = quantity
            else:
                replacement_qty = parse_quantity(raw.get('replacement_quantity'), f'Item {index} replacement quantity')
            if replacement_qty <= 0:
                raise ValidationError(f'Item {index}: replacement quantity must be greater than 0')

        lines.append({
            'product_id': product_id,
            'quantity': quantity,
            'replacement_product_id': replacement_id,
            'replacement_quantity': replacement_qty,
        })
    return lines


def register_return(original_sale_id, items, reason=None, notes=None, date=None, user=None):
    """
    Record returned units against the sale they were sold on.

    Every quantity is checked against ``sold - already returned`` for that
    product on that sale and every replacement against stock before
    anything is written.
    """
    lines = _parse_return_items(items)
    return_date = parse_date(date) or datetime.utcnow()
    user = acting_user(user)

    with ledger_transaction():
        sale = lock_sale(original_sale_id)
        if sale.is_reversed:
            raise AlreadyReversedError(f'Sale #{sale.id} has been reversed')

        available = returnable_quantities(sale)
        requested = defaultdict(int)
        replacements = defaultdict(int)
        for line in lines:
            requested[line['product_id']] += line['quantity']
            if line['replacement_product_id']:
                replacements[line['replacement_product_id']] += line['replacement_quantity']

        for product_id, qty in requested.items():
            if product_id not in available:
                product = db.session.get(Product, product_id)
                name = product.name if product else f'Product {product_id}'
                raise ExcessReturnError(f'{name} was not sold on Sale #{sale.id}')
            if qty > available[product_id]:
                raise ExcessReturnError(
                    f'Cannot return {qty} units of product {product_id}: '
                    f'only {available[product_id]} left to return on Sale #{sale.id}'
                )

        # Returned units land back in stock first, so exchanging a product
        # for itself only needs the net difference.
        net_replacement = {}
        for product_id, qty in replacements.items():
            net = qty - requested.get(product_id, 0)
            if net > 0:
                net_replacement[product_id] = net
            elif not db.session.get(Product, product_id):
                raise NotFoundError(f'Product {product_id} not found')
        if net_replacement:
            check_stock(net_replacement)

        prices = _unit_prices(sale)
        ret = Return(
            date=return_date,
            reason=reason,
            notes=notes,
            created_by=user.id if user else None
        )
        for line in lines:
            ret.items.append(ReturnItem(
                product_id=line['product_id'],
                quantity=line['quantity'],
                unit_price=prices[line['product_id']],
                replacement_product_id=line['replacement_product_id'],
                replacement_quantity=line['replacement_quantity']
            ))
        ret.original_sale = sale
        db.session.add(ret)
        db.session.flush()

        for product_id, qty in requested.items():
            adjust_stock(product_id, qty, f'Return #{ret.id} on Sale #{sale.id}',
                         sale_id=sale.id, return_id=ret.id, user=user)
        for product_id, qty in replacements.items():
            adjust_stock(product_id, -qty, f'Replacement for Return #{ret.id} on Sale #{sale.id}',
                         sale_id=sale.id, return_id=ret.id, user=user)

        log_action(f'Registered Return #{ret.id} of {sum(requested.values())} units on Sale #{sale.id}.', user)

    return ret


def get_return(return_id):
    ret = db.session.get(Return, return_id)
    if not ret:
        raise NotFoundError(f'Return {return_id} not found')
    return ret
