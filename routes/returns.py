from flask import Blueprint, request
from flask_login import login_required
from models import Return
from errors import ValidationError
from .utils import ok, parse_quantity
from .return_utils import register_return, get_return

returns_bp = Blueprint('returns', __name__, url_prefix='/api/returns')


@returns_bp.route('', methods=['GET'])
@login_required
def list_returns():
    query = Return.query
    sale_id = request.args.get('sale_id')
    if sale_id:
        query = query.filter(Return.original_sale_id == parse_quantity(sale_id, 'sale_id'))
    returns = query.order_by(Return.date.desc(), Return.id.desc()).all()
    return ok([r.to_dict() for r in returns])


@returns_bp.route('/<int:return_id>', methods=['GET'])
@login_required
def view_return(return_id):
    return ok(get_return(return_id).to_dict())


@returns_bp.route('', methods=['POST'])
@login_required
def new_return():
    data = request.get_json(silent=True) or {}
    if data.get('original_sale_id') in (None, ''):
        raise ValidationError('original_sale_id is required')
    ret = register_return(
        parse_quantity(data.get('original_sale_id'), 'original_sale_id'),
        data.get('items'),
        reason=data.get('reason'),
        notes=data.get('notes'),
        date=data.get('date')
    )
    return ok(ret.to_dict(), 'Return recorded', 201)
