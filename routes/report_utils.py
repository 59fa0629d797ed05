"""
Reporting projector: read-only aggregation over the ledger.

Everything money-related here comes from ``settlement_state``; nothing
re-derives paid/pending from raw payment sums.
"""
from collections import defaultdict
from datetime import date, timedelta
from models import db, Sale, Payment, Buyer
from errors import NotFoundError
from .settlement_utils import settlement_state, STATUS_PENDING, STATUS_ONGOING, STATUS_PAID
from .return_utils import returned_quantities

# Worst status wins when rolling sales up to a shop.
_STATUS_RANK = {STATUS_PAID: 0, STATUS_ONGOING: 1, STATUS_PENDING: 2}


def _active_sales(start_date=None, end_date=None, buyer_id=None):
    query = Sale.query.filter(Sale.is_reversed.is_(False))
    if buyer_id is not None:
        query = query.filter(Sale.buyer_id == buyer_id)
    if start_date:
        query = query.filter(Sale.date >= start_date)
    if end_date:
        # Inclusive end date
        query = query.filter(Sale.date < end_date + timedelta(days=1))
    return query.order_by(Sale.date.asc()).all()


def shop_summaries():
    """Per-shop totals and overall payment status, reversed sales excluded."""
    summaries = {}
    for buyer in Buyer.query.order_by(Buyer.shop_name).all():
        summaries[buyer.id] = {
            'buyer_id': buyer.id,
            'shop_name': buyer.shop_name,
            'is_active': buyer.is_active,
            'sales_count': 0,
            'total_amount': 0.0,
            'total_paid': 0.0,
            'pending_amount': 0.0,
            'pending_cash': 0.0,
            'pending_cheque': 0.0,
            'status': None,
        }

    for sale in Sale.query.filter(Sale.is_reversed.is_(False), Sale.buyer_id.isnot(None)).all():
        summary = summaries.get(sale.buyer_id)
        if summary is None:
            continue
        state = settlement_state(sale)
        summary['sales_count'] += 1
        for key in ('total_amount', 'total_paid', 'pending_amount', 'pending_cash', 'pending_cheque'):
            summary[key] = round(summary[key] + state[key], 2)
        if summary['status'] is None or _STATUS_RANK[state['status']] > _STATUS_RANK[summary['status']]:
            summary['status'] = state['status']

    return list(summaries.values())


def product_totals(start_date=None, end_date=None):
    """Sold, free and returned units plus revenue per product."""
    totals = defaultdict(lambda: {'product_name': None, 'quantity_sold': 0, 'free_quantity': 0,
                                  'quantity_returned': 0, 'revenue': 0.0})
    for sale in _active_sales(start_date, end_date):
        for item in sale.items:
            row = totals[item.product_id]
            row['product_name'] = row['product_name'] or item.product_name
            row['quantity_sold'] += item.quantity
            row['free_quantity'] += item.free_quantity or 0
            row['revenue'] = round(row['revenue'] + item.line_total, 2)
        for issue in sale.free_issues:
            row = totals[issue.product_id]
            row['product_name'] = row['product_name'] or issue.product.name
            row['free_quantity'] += issue.quantity
        for product_id, qty in returned_quantities(sale).items():
            totals[product_id]['quantity_returned'] += qty

    result = []
    for product_id, row in sorted(totals.items()):
        row['product_id'] = product_id
        row['net_quantity'] = row['quantity_sold'] - row['quantity_returned']
        result.append(row)
    return result


def expiry_band(days_until_expiry):
    if days_until_expiry < 0:
        return 'expired'
    if days_until_expiry == 0:
        return 'today'
    if days_until_expiry <= 2:
        return 'soon'
    if days_until_expiry <= 7:
        return 'upcoming'
    return 'ok'


def cheque_alerts(today=None, within_days=None):
    """Pending cheques ordered by expiry, with how many days are left."""
    today = today or date.today()
    payments = (Payment.query
                .filter(Payment.cheque_status == 'pending')
                .order_by(Payment.cheque_expiry_date.asc().nulls_last(), Payment.id.asc())
                .all())
    alerts = []
    for payment in payments:
        days = (payment.cheque_expiry_date - today).days if payment.cheque_expiry_date else None
        if within_days is not None and days is not None and days > within_days:
            continue
        sale = payment.sale
        alerts.append({
            'payment_id': payment.id,
            'sale_id': sale.id,
            'cheque_number': payment.cheque_number,
            'bank_name': payment.cheque_bank,
            'amount': payment.cheque_amount,
            'expiry_date': payment.cheque_expiry_date.isoformat() if payment.cheque_expiry_date else None,
            'days_until_expiry': days,
            'band': expiry_band(days) if days is not None else None,
            'buyer_name': sale.display_name,
            'sale_total': sale.total_amount,
        })
    return alerts


def ongoing_pending():
    """Sales whose collection has started but is not finished."""
    rows = []
    for sale in _active_sales():
        state = settlement_state(sale)
        if state['status'] != STATUS_ONGOING:
            continue
        rows.append({
            'sale_id': sale.id,
            'buyer_id': sale.buyer_id,
            'shop_name': sale.display_name,
            'date': sale.date.isoformat(),
            'total_amount': state['total_amount'],
            'total_paid': state['total_paid'],
            'pending_amount': state['pending_amount'],
            'pending_cash': state['pending_cash'],
            'pending_cheque': state['pending_cheque'],
        })
    return rows


def shop_payment_history(buyer_id):
    buyer = db.session.get(Buyer, buyer_id)
    if not buyer:
        raise NotFoundError(f'Shop {buyer_id} not found')
    payments = (Payment.query
                .join(Sale, Payment.sale_id == Sale.id)
                .filter(Sale.buyer_id == buyer_id)
                .order_by(Payment.created_at.desc(), Payment.id.desc())
                .all())
    return {
        'buyer': buyer.to_dict(),
        'payments': [p.to_dict() for p in payments],
    }
