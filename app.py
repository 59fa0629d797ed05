import logging
import os
from flask import Flask
from flask_login import LoginManager
from sqlalchemy import event

from models import db, User
from config import Config
from errors import LedgerError
from extensions import limiter
from passlib.hash import pbkdf2_sha256


def _use_immediate_transactions(engine):
    """
    Make every SQLite transaction take the write lock on BEGIN.

    pysqlite defers BEGIN until the first write, so two requests could
    both read a sale's balance before either writes. BEGIN IMMEDIATE makes
    the second one wait instead.
    """
    @event.listens_for(engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN IMMEDIATE')


def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    if not app.config.get('TESTING'):
        os.makedirs(app.instance_path, exist_ok=True)
        logging.basicConfig(level=logging.INFO,
                            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    limiter.init_app(app)
    db.init_app(app)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite') and app.config.get('SQLITE_BEGIN_IMMEDIATE'):
        with app.app_context():
            _use_immediate_transactions(db.engine)

    # --- Login Manager ---
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return {'success': False, 'error': 'Unauthenticated', 'message': 'Please log in first.'}, 401

    # --- Error handling ---
    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        app.logger.info('%s: %s', error.kind, error.message)
        return error.to_dict(), error.status_code

    # --- Blueprints ---
    from routes.buyers import buyers_bp
    from routes.inventory import inventory_bp
    from routes.sales import sales_bp
    from routes.void_transactions import void_bp
    from routes.payments import payments_bp
    from routes.returns import returns_bp
    from routes.reports import reports_bp

    app.register_blueprint(buyers_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(void_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(reports_bp)

    return app


def seed_essential_data(app):
    """Seeds the Admin user if the database has none."""
    with app.app_context():
        if not User.query.filter_by(role='Admin').first():
            app.logger.info('Creating admin user %s', app.config['ADMIN_USERNAME'])
            try:
                admin = User(username=app.config['ADMIN_USERNAME'],
                             password_hash=pbkdf2_sha256.hash(app.config['ADMIN_PASSWORD']),
                             full_name='Administrator', role='Admin')
                db.session.add(admin)
                db.session.commit()
                app.logger.info('Admin user created')
            except Exception:
                db.session.rollback()
                app.logger.exception('Error creating admin user')


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        # 1. Create all tables
        db.create_all()

    # 2. Seed the essential data (Pass the app object to the function)
    seed_essential_data(app)

    app.run(debug=True)
