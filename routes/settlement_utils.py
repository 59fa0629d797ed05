"""
Settlement engine.

Owns the rules for a sale's monetary obligation: how it is created, how
cash/cheque/split/ongoing payments discharge it, how bounced cheques reopen
it and how a reversal undoes the whole sale. Settlement state is never
stored; ``settlement_state`` recomputes it from the ledger rows and every
consumer (API, reports) reads it from there.

Each mutating operation runs inside one ``ledger_transaction`` and holds the
sale's row lock from its first read to commit. All validation happens
before the first write.
"""
import logging
from collections import defaultdict
from datetime import datetime
from flask import current_app
from models import db, Sale, SaleItem, Payment, FreeIssue, Buyer, PAYMENT_METHODS
from errors import (ValidationError, NotFoundError, OverpaymentError, MissingChequeDetailError,
                    AlreadyReversedError, ChequeStateError, Unauthorized)
from .utils import (ledger_transaction, lock_sale, log_action, acting_user, round_money,
                    parse_amount, parse_quantity, parse_date, MONEY_EPSILON)
from .stock_utils import adjust_stock, check_stock
from .auth_utils import verify_credential

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_ONGOING = 'ongoing'
STATUS_PAID = 'paid'


# --- Derived state ---

def returned_amount(sale):
    """Value of everything returned against the sale, at the sold price."""
    return round_money(sum(
        item.quantity * item.unit_price
        for ret in sale.returns
        for item in ret.items
    ))


def settlement_state(sale):
    """
    Recompute a sale's settlement state from its payments and returns.

    Bounced cheque components do not count as paid. Returns lower the
    amount still owed but never refund what was already collected; any
    excess shows up as ``credit_amount``.
    """
    payments = list(sale.payments)
    total_amount = round_money(sale.total_amount)
    returned = returned_amount(sale)
    net_amount = round_money(max(total_amount - returned, 0.0))
    total_paid = round_money(sum(p.counted_amount for p in payments))
    pending_amount = round_money(max(net_amount - total_paid, 0.0))
    credit_amount = round_money(max(total_paid - net_amount, 0.0))
    pending_cheque = round_money(sum(p.cheque_amount for p in payments if p.cheque_status == 'pending'))

    if pending_amount < MONEY_EPSILON:
        pending_amount = 0.0
    # Once collection has started the rest is followed up in cash.
    pending_cash = pending_amount if payments else 0.0

    if pending_amount == 0.0:
        status = STATUS_PAID
    elif total_paid > 0 or pending_cash > 0 or pending_cheque > 0:
        status = STATUS_ONGOING
    else:
        status = STATUS_PENDING

    return {
        'total_amount': total_amount,
        'returned_amount': returned,
        'net_amount': net_amount,
        'total_paid': total_paid,
        'pending_amount': pending_amount,
        'pending_cash': pending_cash,
        'pending_cheque': pending_cheque,
        'credit_amount': credit_amount,
        'status': status,
        'is_reversed': bool(sale.is_reversed),
    }


def get_sale(sale_id):
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError(f'Sale {sale_id} not found')
    return sale


def get_sale_state(sale_id):
    return settlement_state(get_sale(sale_id))


def serialize_sale(sale, include_items=True):
    data = {
        'id': sale.id,
        'buyer_id': sale.buyer_id,
        'customer_name': sale.display_name,
        'date': sale.date.isoformat() if sale.date else None,
        'route': sale.route,
        'notes': sale.notes,
        'is_edited': sale.is_edited,
        'reversed_at': sale.reversed_at.isoformat() if sale.reversed_at else None,
        'reversal_reason': sale.reversal_reason,
        'created_by': sale.created_by,
    }
    data.update(settlement_state(sale))
    data['payment_status'] = data.pop('status')
    if include_items:
        data['items'] = [item.to_dict() for item in sale.items]
    return data


# --- Input parsing ---

def _parse_sale_items(items):
    if not items or not isinstance(items, (list, tuple)):
        raise ValidationError('A sale needs at least one item')

    lines = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict) or raw.get('product_id') in (None, ''):
            raise ValidationError(f'Item {index}: product is required')
        product_id = parse_quantity(raw.get('product_id'), f'Item {index} product')
        quantity = parse_quantity(raw.get('quantity'), f'Item {index} quantity')
        if quantity <= 0:
            raise ValidationError(f'Item {index}: quantity must be greater than 0')

        unit_price = None
        if raw.get('unit_price') not in (None, ''):
            unit_price = parse_amount(raw.get('unit_price'), f'Item {index} unit price')
            if unit_price < 0:
                raise ValidationError(f'Item {index}: unit price cannot be negative')

        free_quantity = 0
        if raw.get('free_quantity') not in (None, ''):
            free_quantity = parse_quantity(raw.get('free_quantity'), f'Item {index} free quantity')
            if free_quantity < 0:
                raise ValidationError(f'Item {index}: free quantity cannot be negative')

        lines.append({
            'product_id': product_id,
            'quantity': quantity,
            'unit_price': unit_price,
            'free_quantity': free_quantity,
        })
    return lines


def _parse_free_items(free_items):
    """Turn [{product_id, quantity}] into a {product_id: units} demand."""
    demand = defaultdict(int)
    for index, raw in enumerate(free_items or [], start=1):
        if not isinstance(raw, dict) or raw.get('product_id') in (None, ''):
            raise ValidationError(f'Free item {index}: product is required')
        product_id = parse_quantity(raw.get('product_id'), f'Free item {index} product')
        quantity = parse_quantity(raw.get('quantity'), f'Free item {index} quantity')
        if quantity <= 0:
            raise ValidationError(f'Free item {index}: quantity must be greater than 0')
        demand[product_id] += quantity
    return dict(demand)


def _check_instrument(method, cash, cheque):
    if method == 'cash':
        if cash <= 0:
            raise ValidationError('Cash amount must be greater than 0')
        if cheque:
            raise ValidationError('A cash payment cannot carry a cheque amount')
    elif method == 'cheque':
        if cheque <= 0:
            raise ValidationError('Cheque amount must be greater than 0')
        if cash:
            raise ValidationError('A cheque payment cannot carry a cash amount; use split')
    elif method == 'split':
        if cash + cheque <= 0:
            raise ValidationError('Enter at least one payment amount (cash or cheque)')
    elif method == 'ongoing':
        if cheque:
            raise ValidationError('Cheques are not accepted for ongoing settlement')


def _check_cheque_details(cheque_number, cheque_expiry_date):
    if not cheque_number or not str(cheque_number).strip():
        raise MissingChequeDetailError('Please enter cheque number')
    if not cheque_expiry_date:
        raise MissingChequeDetailError('Please enter cheque expiry date')
    return parse_date(cheque_expiry_date, 'Cheque expiry date').date()


def _ensure_open(sale):
    if sale.is_reversed:
        raise AlreadyReversedError(f'Sale #{sale.id} has been reversed')


# --- Operations ---

def create_sale(items, buyer_id=None, customer_name=None, date=None, route=None, notes=None, user=None):
    """
    Record a delivery and consume its stock.

    Each line consumes ``quantity + free_quantity`` units; only the paid
    quantity is charged. When ``unit_price`` is omitted the product's
    selling price is used.
    """
    lines = _parse_sale_items(items)
    sale_date = parse_date(date) or datetime.utcnow()
    user = acting_user(user)

    with ledger_transaction():
        buyer = None
        if buyer_id not in (None, ''):
            buyer = db.session.get(Buyer, parse_quantity(buyer_id, 'Shop'))
            if not buyer:
                raise NotFoundError(f'Shop {buyer_id} not found')
            if not buyer.is_active:
                raise ValidationError(f'Shop {buyer.shop_name} is inactive')

        demand = defaultdict(int)
        for line in lines:
            demand[line['product_id']] += line['quantity'] + line['free_quantity']
        products = check_stock(dict(demand))

        sale = Sale(
            buyer_id=buyer.id if buyer else None,
            customer_name=(customer_name or '').strip() or (buyer.shop_name if buyer else None),
            date=sale_date,
            route=route,
            notes=notes,
            created_by=user.id if user else None
        )
        total = 0.0
        for line in lines:
            product = products[line['product_id']]
            unit_price = line['unit_price'] if line['unit_price'] is not None else round_money(product.selling_price)
            line_total = round(unit_price * line['quantity'], 2)
            sale.items.append(SaleItem(
                product_id=product.id,
                product_name=product.name,
                quantity=line['quantity'],
                unit_price=unit_price,
                free_quantity=line['free_quantity'],
                line_total=line_total
            ))
            total += line_total
        sale.total_amount = round(total, 2)
        db.session.add(sale)
        db.session.flush()

        for product_id, units in demand.items():
            adjust_stock(product_id, -units, f'Sale #{sale.id}', sale_id=sale.id, user=user)

        log_action(f'Recorded Sale #{sale.id} for Rs. {sale.total_amount:,.2f}. Customer: {sale.display_name}', user)

    return sale


def propose_payment(sale_id, method, cash_amount=0, cheque_amount=0, cheque_number=None, cheque_bank=None,
                    cheque_expiry_date=None, notes=None, free_items=None, user=None):
    """
    Validate and record a payment against a sale.

    Returns ``(payment, state)``. ``payment`` is None for an ongoing
    proposal of zero: no row is written and the sale keeps its current
    state. Anything above the remaining balance is rejected, never clamped.
    """
    method = (method or '').strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f'Unknown payment method "{method}"')
    cash = parse_amount(cash_amount, 'Cash amount')
    cheque = parse_amount(cheque_amount, 'Cheque amount')
    if cash < 0 or cheque < 0:
        raise ValidationError('Payment amounts cannot be negative')
    _check_instrument(method, cash, cheque)
    expiry = _check_cheque_details(cheque_number, cheque_expiry_date) if cheque > 0 else None
    free_demand = _parse_free_items(free_items)
    user = acting_user(user)

    with ledger_transaction():
        sale = lock_sale(sale_id)
        _ensure_open(sale)

        state = settlement_state(sale)
        # Credit left by a return means nothing is owed.
        remaining = max(round_money(state['net_amount'] - state['total_paid']), 0.0)
        proposed = round_money(cash + cheque)
        if proposed - remaining > MONEY_EPSILON:
            raise OverpaymentError(
                f'Payment amount (Rs. {proposed:,.2f}) exceeds remaining balance (Rs. {remaining:,.2f})'
            )
        if free_demand:
            check_stock(free_demand)

        payment = None
        if proposed > 0:
            payment = Payment(
                payment_method=method,
                amount=proposed,
                cash_amount=cash,
                cheque_amount=cheque,
                cheque_number=str(cheque_number).strip() if cheque > 0 else None,
                cheque_bank=(cheque_bank or None) if cheque > 0 else None,
                cheque_expiry_date=expiry,
                cheque_status='pending' if cheque > 0 else None,
                notes=notes,
                created_by=user.id if user else None
            )
            sale.payments.append(payment)
            db.session.flush()
            log_action(f'Recorded {method} Payment #{payment.id} of Rs. {proposed:,.2f} for Sale #{sale.id}.', user)

        for product_id, units in free_demand.items():
            sale.free_issues.append(FreeIssue(
                product_id=product_id,
                quantity=units,
                payment_id=payment.id if payment else None
            ))
            adjust_stock(product_id, -units, f'Free issue on Sale #{sale.id}', sale_id=sale.id,
                         payment_id=payment.id if payment else None, user=user)

        state = settlement_state(sale)

    return payment, state


def settle_remaining(sale_id, amount, notes=None, user=None):
    """Follow-up cash collection on an ongoing sale."""
    amount = parse_amount(amount, 'Amount')
    if amount <= 0:
        raise ValidationError('Amount must be greater than 0')
    user = acting_user(user)

    with ledger_transaction():
        sale = lock_sale(sale_id)
        _ensure_open(sale)
        state = settlement_state(sale)
        if amount - state['pending_amount'] > MONEY_EPSILON:
            raise OverpaymentError(
                f'Payment amount (Rs. {amount:,.2f}) exceeds pending amount (Rs. {state["pending_amount"]:,.2f})'
            )

        payment = Payment(
            payment_method='ongoing',
            amount=amount,
            cash_amount=amount,
            cheque_amount=0.0,
            notes=notes,
            created_by=user.id if user else None
        )
        sale.payments.append(payment)
        db.session.flush()
        log_action(f'Collected Rs. {amount:,.2f} on ongoing Sale #{sale.id} (Payment #{payment.id}).', user)
        state = settlement_state(sale)

    return payment, state


def _change_cheque_status(payment_id, new_status, user=None):
    user = acting_user(user)
    with ledger_transaction():
        payment = db.session.get(Payment, payment_id)
        if not payment:
            raise NotFoundError(f'Payment {payment_id} not found')
        sale = lock_sale(payment.sale_id)
        db.session.refresh(payment)
        _ensure_open(sale)
        if not payment.cheque_amount or payment.cheque_amount <= 0:
            raise ChequeStateError(f'Payment #{payment.id} has no cheque component')
        if payment.cheque_status != 'pending':
            raise ChequeStateError(f'Cheque {payment.cheque_number} is already {payment.cheque_status}')

        payment.cheque_status = new_status
        payment.cheque_status_changed_at = datetime.utcnow()
        log_action(f'Marked cheque {payment.cheque_number} (Payment #{payment.id}) as {new_status}.', user)
        state = settlement_state(sale)
        sale_ref = sale.id

    if new_status == 'bounced':
        logger.warning('Cheque on payment %s bounced; sale %s reopened with %.2f pending',
                       payment_id, sale_ref, state['pending_amount'])
    return payment, state


def mark_cheque_cleared(payment_id, user=None):
    return _change_cheque_status(payment_id, 'cleared', user)


def mark_cheque_bounced(payment_id, user=None):
    """A bounced cheque stops counting as paid; the balance reopens."""
    return _change_cheque_status(payment_id, 'bounced', user)


def remove_payment(payment_id, reason=None, user=None):
    """
    Delete one payment row, reopening its amount on the sale.

    Free units handed over with the payment stay issued.
    """
    user = acting_user(user)
    with ledger_transaction():
        payment = db.session.get(Payment, payment_id)
        if not payment:
            raise NotFoundError(f'Payment {payment_id} not found')
        sale = lock_sale(payment.sale_id)
        _ensure_open(sale)

        for issue in sale.free_issues:
            if issue.payment_id == payment.id:
                issue.payment_id = None
        sale.payments.remove(payment)
        log_action(f'Deleted Payment #{payment_id} of Rs. {payment.amount:,.2f} from Sale #{sale.id}. '
                   f'Reason: {reason or "-"}', user)
        db.session.flush()
        state = settlement_state(sale)
    return state


def update_sale_details(sale_id, customer_name=None, route=None, notes=None, date=None, user=None):
    """Edit header fields only; lines stay immutable after creation."""
    new_date = parse_date(date)
    user = acting_user(user)
    with ledger_transaction():
        sale = lock_sale(sale_id)
        _ensure_open(sale)
        changed = []
        if customer_name is not None and customer_name.strip() != (sale.customer_name or ''):
            sale.customer_name = customer_name.strip()
            changed.append('customer')
        if route is not None and route != sale.route:
            sale.route = route
            changed.append('route')
        if notes is not None and notes != sale.notes:
            sale.notes = notes
            changed.append('notes')
        if new_date is not None and new_date != sale.date:
            sale.date = new_date
            changed.append('date')
        if changed:
            sale.is_edited = True
            log_action(f'Edited Sale #{sale.id} ({", ".join(changed)}).', user)
    return sale


def consumed_units(sale):
    """
    Net stock the sale still holds, per product.

    Sold and free units, plus free issues and replacement units handed out
    on returns, minus units already returned.
    """
    units = defaultdict(int)
    for item in sale.items:
        units[item.product_id] += item.quantity + (item.free_quantity or 0)
    for issue in sale.free_issues:
        units[issue.product_id] += issue.quantity
    for ret in sale.returns:
        for item in ret.items:
            units[item.product_id] -= item.quantity
            if item.replacement_product_id:
                units[item.replacement_product_id] += item.replacement_quantity or 0
    return dict(units)


def reverse_sale(sale_id, credential, reason=None, user=None, verifier=None):
    """
    Undo a sale's financial and inventory effects. Terminal.

    Deletes every payment and free issue, puts back all stock the sale
    still holds and marks it reversed, all in one transaction: if any step
    fails nothing is written.
    """
    verifier = verifier or verify_credential
    if not verifier(credential):
        raise Unauthorized('Invalid password. Sale reversal not authorised.')
    reason = (reason or '').strip() or current_app.config.get('DEFAULT_REVERSAL_REASON')
    user = acting_user(user)

    with ledger_transaction():
        sale = lock_sale(sale_id)
        if sale.is_reversed:
            raise AlreadyReversedError(f'Sale #{sale.id} has already been reversed')

        restore = consumed_units(sale)
        removed_total = round_money(sum(p.amount for p in sale.payments))
        sale.payments.clear()
        sale.free_issues.clear()

        for product_id, units in restore.items():
            if units:
                adjust_stock(product_id, units, f'Reversal of Sale #{sale.id}', sale_id=sale.id, user=user)

        sale.is_reversed = True
        sale.reversed_at = datetime.utcnow()
        sale.reversed_by = user.id if user else None
        sale.reversal_reason = reason[:500]
        log_action(f'Reversed Sale #{sale.id}; removed Rs. {removed_total:,.2f} of payments. Reason: {reason}', user)

    logger.info('Sale %s reversed', sale_id)
    return sale
