from contextlib import contextmanager
from datetime import datetime, date
from flask import request, jsonify, has_request_context
from flask_login import current_user
from models import db, AuditLog, Sale, Product
from errors import ValidationError, NotFoundError

MONEY_EPSILON = 0.005


def ok(data=None, message=None, status=200):
    """Standard success envelope used by every API endpoint."""
    body = {'success': True, 'data': data}
    if message:
        body['message'] = message
    return jsonify(body), status


def acting_user(user=None):
    """Explicit user first, then the logged-in user when inside a request."""
    if user is not None:
        return user
    if has_request_context() and current_user.is_authenticated:
        return current_user
    return None


def log_action(action_description, user=None):
    """A helper function to easily create an audit log entry."""
    user_to_log = acting_user(user)

    log = AuditLog(
        user_id=user_to_log.id if user_to_log else None,
        action=action_description[:255],
        ip_address=request.remote_addr if has_request_context() else None
    )
    # The caller's transaction commits it together with the change it describes.
    db.session.add(log)


@contextmanager
def ledger_transaction():
    """
    Apply every write made inside the block atomically.

    Commits when the block exits cleanly; on any exception the whole
    session is rolled back and the exception propagates unchanged.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def lock_sale(sale_id):
    """Load a sale holding its row lock until the transaction ends."""
    sale = Sale.query.filter_by(id=sale_id).with_for_update().populate_existing().first()
    if not sale:
        raise NotFoundError(f'Sale {sale_id} not found')
    return sale


def lock_product(product_id):
    product = Product.query.filter_by(id=product_id).with_for_update().populate_existing().first()
    if not product:
        raise NotFoundError(f'Product {product_id} not found')
    return product


def round_money(value):
    return round(float(value or 0), 2)


def parse_amount(value, field):
    """Parse a money amount from user input; missing means 0."""
    if value is None or value == '':
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a number')
    if amount != amount or amount in (float('inf'), float('-inf')):
        raise ValidationError(f'{field} must be a finite number')
    return round(amount, 2)


def parse_quantity(value, field='quantity'):
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be a whole number')
    if isinstance(value, float) and value != qty:
        raise ValidationError(f'{field} must be a whole number')
    return qty


def parse_date(value, field='date'):
    """Accept a date/datetime or a YYYY-MM-DD string; None stays None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format')
