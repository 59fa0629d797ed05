from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

db = SQLAlchemy()

PAYMENT_METHODS = ('cash', 'cheque', 'split', 'ongoing')


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password_hash = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(50), nullable=False, default='Salesperson')  # Admin, Accountant, Salesperson
    is_active_user = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_active(self):
        return self.is_active_user


class Buyer(db.Model):
    """A shop the field sales team delivers to."""
    id = db.Column(db.Integer, primary_key=True)
    shop_name = db.Column(db.String(200), nullable=False)
    contact = db.Column(db.String(100))
    address = db.Column(db.String(300))
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'shop_name': self.shop_name,
            'contact': self.contact,
            'address': self.address,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'is_active': self.is_active,
        }


class Product(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), nullable=True)
    unit = db.Column(db.String(20), nullable=True)
    selling_price = db.Column(db.Float, nullable=False, default=0.0)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=5)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def is_low_stock(self):
        return self.quantity <= self.min_stock_level

    def to_dict(self):
        return {"id": self.id, "name": self.name, "category": self.category, "unit": self.unit,
                "selling_price": self.selling_price, "quantity": self.quantity,
                "is_active": self.is_active, "low": self.is_low_stock()}


class Sale(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey('buyer.id'), nullable=True)
    buyer = db.relationship('Buyer', backref='sales')
    customer_name = db.Column(db.String(200), nullable=True)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    route = db.Column(db.String(200))
    notes = db.Column(db.Text)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    is_edited = db.Column(db.Boolean, default=False, nullable=False)

    items = db.relationship('SaleItem', backref='sale', cascade='all, delete-orphan')
    payments = db.relationship('Payment', backref='sale', cascade='all, delete-orphan',
                               order_by='Payment.created_at')
    returns = db.relationship('Return', backref='original_sale')
    free_issues = db.relationship('FreeIssue', backref='sale', cascade='all, delete-orphan')

    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    is_reversed = db.Column(db.Boolean, default=False, nullable=False)
    reversed_at = db.Column(db.DateTime, nullable=True)
    reversed_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    reversal_reason = db.Column(db.String(500), nullable=True)
    reversed_by_user = db.relationship('User', foreign_keys=[reversed_by])

    @property
    def display_name(self):
        if self.buyer:
            return self.buyer.shop_name
        return self.customer_name or 'Walk-in'


class SaleItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('sale.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    product = db.relationship('Product')
    product_name = db.Column(db.String(200))
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    free_quantity = db.Column(db.Integer, nullable=False, default=0)
    line_total = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'free_quantity': self.free_quantity,
            'line_total': self.line_total,
        }


class Payment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('sale.id'), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    cash_amount = db.Column(db.Float, nullable=False, default=0.0)
    cheque_amount = db.Column(db.Float, nullable=False, default=0.0)

    cheque_number = db.Column(db.String(100), nullable=True)
    cheque_bank = db.Column(db.String(200), nullable=True)
    cheque_expiry_date = db.Column(db.Date, nullable=True)
    cheque_status = db.Column(db.String(20), nullable=True)
    cheque_status_changed_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def counted_amount(self):
        """Amount that still counts towards the sale; bounced cheques don't."""
        if self.cheque_status == 'bounced':
            return round(self.amount - self.cheque_amount, 2)
        return self.amount

    def to_dict(self):
        return {
            'id': self.id,
            'sale_id': self.sale_id,
            'payment_method': self.payment_method,
            'amount': self.amount,
            'cash_amount': self.cash_amount,
            'cheque_amount': self.cheque_amount,
            'cheque_number': self.cheque_number,
            'cheque_bank': self.cheque_bank,
            'cheque_expiry_date': self.cheque_expiry_date.isoformat() if self.cheque_expiry_date else None,
            'cheque_status': self.cheque_status,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class FreeIssue(db.Model):
    """Free units handed over while collecting a payment."""
    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('sale.id'), nullable=False)
    payment_id = db.Column(db.Integer, db.ForeignKey('payment.id', ondelete='SET NULL'), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    product = db.relationship('Product')
    quantity = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class Return(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    original_sale_id = db.Column(db.Integer, db.ForeignKey('sale.id'), nullable=False)
    date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    reason = db.Column(db.String(300))
    notes = db.Column(db.Text)
    items = db.relationship('ReturnItem', backref='return_record', cascade='all, delete-orphan')
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'original_sale_id': self.original_sale_id,
            'date': self.date.isoformat() if self.date else None,
            'reason': self.reason,
            'notes': self.notes,
            'items': [i.to_dict() for i in self.items],
        }


class ReturnItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey('return.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    product = db.relationship('Product', foreign_keys=[product_id])
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    replacement_product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=True)
    replacement_product = db.relationship('Product', foreign_keys=[replacement_product_id])
    replacement_quantity = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'replacement_product_id': self.replacement_product_id,
            'replacement_quantity': self.replacement_quantity,
        }


class StockAdjustment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False)
    product = db.relationship('Product')
    quantity_changed = db.Column(db.Integer, nullable=False)  # e.g., -5 for a sale, 3 for a return
    reason = db.Column(db.String(255), nullable=False)
    sale_id = db.Column(db.Integer, nullable=True)
    return_id = db.Column(db.Integer, nullable=True)
    payment_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    user = db.relationship('User', foreign_keys=[user_id])


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'))
    user = db.relationship('User')
    action = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
    ip_address = db.Column(db.String(45))  # To store user's IP

    def __repr__(self):
        username = self.user.username if self.user else 'System'
        return f'<AuditLog {self.timestamp} - {username}: {self.action}>'
