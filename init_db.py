# Rebuilds the local database with sample shops and dairy products.
from app import create_app, seed_essential_data
from models import db, User, Buyer, Product
from passlib.hash import pbkdf2_sha256
import os

app = create_app()
app.app_context().push()

db_path = os.path.join(app.instance_path, 'app.db')
if os.path.exists(db_path):
    os.remove(db_path)

db.create_all()
seed_essential_data(app)

accountant = User(username='accounts', password_hash=pbkdf2_sha256.hash('accounts123'), role='Accountant')
rep = User(username='rep1', password_hash=pbkdf2_sha256.hash('rep123'), role='Salesperson', full_name='Route Rep')
db.session.add(accountant); db.session.add(rep)
db.session.commit()
print('Users created (accounts/accounts123, rep1/rep123).')

buyers = [
    dict(shop_name='Lakeside Grocery', contact='0771234567', address='12 Lake Rd', latitude=6.9271, longitude=79.8612),
    dict(shop_name='Hill Top Stores', contact='0719876543', address='4 Temple St'),
]
for b in buyers:
    db.session.add(Buyer(**b))

products = [
    dict(name='Fresh Milk 1L', category='Milk', unit='bottle', selling_price=100.0, quantity=200),
    dict(name='Set Yoghurt', category='Yoghurt', unit='cup', selling_price=60.0, quantity=300),
    dict(name='Curd 1kg', category='Curd', unit='pot', selling_price=450.0, quantity=50),
]
for p in products:
    db.session.add(Product(**p))

db.session.commit()
print('Initialized DB with sample shops and products.')
