import pytest

from models import Return, StockAdjustment
from errors import ExcessReturnError, InsufficientStockError, ValidationError, NotFoundError
from routes.settlement_utils import create_sale, propose_payment, get_sale_state
from routes.return_utils import register_return, returnable_quantities


@pytest.fixture
def sale(milk, buyer):
    return create_sale([{'product_id': milk.id, 'quantity': 10, 'unit_price': 100}], buyer_id=buyer.id)


def test_partial_returns_up_to_sold_quantity(sale, milk, stock):
    register_return(sale.id, [{'product_id': milk.id, 'quantity': 3}], reason='Damaged')
    assert stock(milk.id) == 43

    with pytest.raises(ExcessReturnError):
        register_return(sale.id, [{'product_id': milk.id, 'quantity': 8}])

    assert stock(milk.id) == 43
    assert Return.query.filter_by(original_sale_id=sale.id).count() == 1
    assert returnable_quantities(sale)[milk.id] == 7


def test_return_lowers_amount_owed(sale, milk):
    register_return(sale.id, [{'product_id': milk.id, 'quantity': 2}])
    state = get_sale_state(sale.id)
    assert state['returned_amount'] == 200.0
    assert state['net_amount'] == 800.0
    assert state['pending_amount'] == 800.0


def test_return_after_full_payment_shows_credit(sale, milk):
    propose_payment(sale.id, 'cash', cash_amount=1000)
    register_return(sale.id, [{'product_id': milk.id, 'quantity': 1}])
    state = get_sale_state(sale.id)
    assert state['status'] == 'paid'
    assert state['total_paid'] == 1000.0
    assert state['credit_amount'] == 100.0


def test_lines_for_same_product_are_summed(sale, milk):
    with pytest.raises(ExcessReturnError):
        register_return(sale.id, [
            {'product_id': milk.id, 'quantity': 6},
            {'product_id': milk.id, 'quantity': 5},
        ])


def test_product_not_on_sale(sale, yoghurt, stock):
    with pytest.raises(ExcessReturnError):
        register_return(sale.id, [{'product_id': yoghurt.id, 'quantity': 1}])
    assert stock(yoghurt.id) == 40


def test_replacement_swaps_stock(sale, milk, yoghurt, stock):
    ret = register_return(sale.id, [{'product_id': milk.id, 'quantity': 2, 'replacement_product_id': yoghurt.id}])
    assert ret.items[0].replacement_quantity == 2
    assert stock(milk.id) == 42
    assert stock(yoghurt.id) == 38
    movements = StockAdjustment.query.filter_by(return_id=ret.id).count()
    assert movements == 2


def test_like_for_like_exchange_needs_only_net_stock(milk, stock):
    sale = create_sale([{'product_id': milk.id, 'quantity': 50}])
    assert stock(milk.id) == 0
    register_return(sale.id, [{'product_id': milk.id, 'quantity': 3, 'replacement_product_id': milk.id}])
    assert stock(milk.id) == 0


def test_replacement_shortfall_writes_nothing(sale, milk, yoghurt, stock):
    with pytest.raises(InsufficientStockError):
        register_return(sale.id, [{'product_id': milk.id, 'quantity': 2,
                                   'replacement_product_id': yoghurt.id, 'replacement_quantity': 41}])
    assert stock(milk.id) == 40
    assert Return.query.count() == 0


def test_unknown_replacement_product(sale, milk):
    with pytest.raises(NotFoundError):
        register_return(sale.id, [{'product_id': milk.id, 'quantity': 1,
                                   'replacement_product_id': 999, 'replacement_quantity': 1}])


@pytest.mark.parametrize('items', [
    [],
    [{'quantity': 1}],
    [{'product_id': 1, 'quantity': 0}],
])
def test_invalid_items(sale, items):
    with pytest.raises(ValidationError):
        register_return(sale.id, items)


def test_missing_sale(milk):
    with pytest.raises(NotFoundError):
        register_return(404, [{'product_id': milk.id, 'quantity': 1}])
