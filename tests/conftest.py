import pytest
from flask import g
from flask_login import FlaskLoginClient
from passlib.hash import pbkdf2_sha256

from app import create_app
from config import TestingConfig
from models import db, User, Buyer, Product
from routes.stock_utils import get_stock

ADMIN_PASSWORD = 'admin123'


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    app.test_client_class = FlaskLoginClient

    @app.before_request
    def forget_cached_user():
        # Requests share the fixture's app context; reload the user from each client's session.
        g.pop('_login_user', None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def admin(app):
    user = User(username='admin', password_hash=pbkdf2_sha256.hash(ADMIN_PASSWORD), role='Admin')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def salesperson(app):
    user = User(username='rep1', password_hash=pbkdf2_sha256.hash('rep123'), role='Salesperson')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def buyer(app):
    shop = Buyer(shop_name='Lakeside Grocery', contact='0771234567', address='12 Lake Rd')
    db.session.add(shop)
    db.session.commit()
    return shop


@pytest.fixture
def milk(app):
    product = Product(name='Fresh Milk 1L', category='Milk', unit='bottle', selling_price=100.0, quantity=50)
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture
def yoghurt(app):
    product = Product(name='Set Yoghurt', category='Yoghurt', unit='cup', selling_price=60.0, quantity=40)
    db.session.add(product)
    db.session.commit()
    return product


@pytest.fixture
def client(app, admin):
    return app.test_client(user=admin)


@pytest.fixture
def rep_client(app, salesperson):
    return app.test_client(user=salesperson)


@pytest.fixture
def stock(app):
    return get_stock
