from flask import Blueprint, request
from flask_login import login_required
from .decorators import role_required
from .utils import ok, parse_date
from .report_utils import shop_summaries, product_totals

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


@reports_bp.route('/shops')
@login_required
@role_required('Admin', 'Accountant')
def shops():
    return ok(shop_summaries())


@reports_bp.route('/products')
@login_required
@role_required('Admin', 'Accountant')
def products():
    start_date = parse_date(request.args.get('start_date'), 'start_date')
    end_date = parse_date(request.args.get('end_date'), 'end_date')
    return ok(product_totals(start_date, end_date))
