from flask import Blueprint, request, current_app
from flask_login import login_required
from extensions import limiter
from .utils import ok
from .settlement_utils import reverse_sale, serialize_sale

void_bp = Blueprint('void', __name__, url_prefix='/api/sales')


@void_bp.route('/<int:sale_id>/reverse', methods=['POST'])
@login_required
@limiter.limit(lambda: current_app.config['REVERSAL_RATE_LIMIT'])
def reverse(sale_id):
    """Reverse a sale: payments removed, stock restored. Needs an approver password."""
    data = request.get_json(silent=True) or {}
    sale = reverse_sale(sale_id, data.get('password'), data.get('reason'))
    return ok(serialize_sale(sale), f'Sale #{sale_id} has been reversed successfully.')
