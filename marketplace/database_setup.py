import importlib
import inspect
import os
from decimal import Decimal
from pathlib import Path

import click
from sqlalchemy import text
from sqlalchemy import inspect as sql_inspect
from sqlalchemy.exc import SQLAlchemyError

from marketplace import db, bcrypt
from marketplace.models import SubscriptionPlan, User
from marketplace.models.subscription import BillingCycle, SubscriptionTier
from marketplace.models.user import Role

DEFAULT_PLANS = (
    {
        'name': 'Starter Plan',
        'tier': SubscriptionTier.STARTER,
        'description': 'Perfect for getting started',
        'price': Decimal('0'),
        'trial_days': 0,
    },
    {
        'name': 'Basic Plan',
        'tier': SubscriptionTier.BASIC,
        'description': 'For growing businesses',
        'price': Decimal('20.00'),
        'trial_days': 0,
    },
    {
        'name': 'Pro Plan',
        'tier': SubscriptionTier.PREMIUM,
        'description': 'For established sellers',
        'price': Decimal('50.00'),
        'trial_days': 14,
    },
    {
        'name': 'Enterprise Plan',
        'tier': SubscriptionTier.ENTERPRISE,
        'description': 'For large operations',
        'price': Decimal('100.00'),
        'trial_days': 0,
    },
)


def discover_models():
    """Find every SQLAlchemy model in the models package, keyed by class name."""
    models_discovered = {}
    models_dir = Path(__file__).parent / 'models'

    for model_file in models_dir.glob('*.py'):
        if model_file.name == '__init__.py':
            continue
        module_name = f"marketplace.models.{model_file.stem}"
        module = importlib.import_module(module_name)
        for name, obj in inspect.getmembers(module, inspect.isclass):
            if hasattr(obj, '__tablename__') and hasattr(obj, '__table__'):
                models_discovered[name] = {
                    'class': obj,
                    'table_name': obj.__tablename__,
                    'module': module_name,
                }
    return models_discovered


def check_database_connection():
    try:
        db.session.execute(text('SELECT 1'))
        return True
    except SQLAlchemyError as e:
        print(f"Database connection failed: {e}")
        return False


def get_existing_tables():
    return sql_inspect(db.engine).get_table_names()


def initialize_database():
    """Create missing tables and seed the default plans and admin account."""
    print("Initializing database...")

    if not check_database_connection():
        return False

    existing_tables = get_existing_tables()
    missing = [
        info['table_name'] for info in discover_models().values()
        if info['table_name'] not in existing_tables
    ]
    if missing:
        print(f"Creating {len(missing)} missing tables: {', '.join(sorted(missing))}")
        db.create_all()
    else:
        print("All model tables exist in the database.")

    seed_default_plans()
    create_admin_user()

    print("Database setup complete!")
    return True


def seed_default_plans():
    """Insert the default subscription plans that do not exist yet."""
    created = 0
    for plan in DEFAULT_PLANS:
        if SubscriptionPlan.query.filter_by(tier=plan['tier'], name=plan['name']).first():
            continue
        db.session.add(SubscriptionPlan(billing_cycle=BillingCycle.MONTHLY, is_active=True, **plan))
        created += 1

    db.session.commit()
    if created:
        print(f"Created {created} subscription plans.")
    return created


def create_admin_user():
    """Create the platform admin when the database has none."""
    if User.query.filter_by(role=Role.ADMIN).first():
        return None

    password = os.environ.get('ADMIN_PASSWORD', 'admin123')
    admin = User(
        email=os.environ.get('ADMIN_EMAIL', 'admin@marketplace.local'),
        name='Marketplace Admin',
        password_hash=bcrypt.generate_password_hash(password).decode('utf-8'),
        role=Role.ADMIN,
    )
    db.session.add(admin)
    db.session.commit()
    print("Admin user created.")
    return admin


# Flask CLI commands registration
def register_db_commands(app):
    """Register database commands with Flask CLI"""

    @app.cli.command('init_db')
    def init_db_command():
        """Initializes the database with tables and seed data."""
        initialize_database()

    @app.cli.command('seed_plans')
    def seed_plans_command():
        """Inserts the default subscription plans."""
        seed_default_plans()

    @app.cli.command('reset_db')
    @click.confirmation_option(prompt='This will delete all data. Are you sure?')
    def reset_db_command():
        """Drops all tables and re-initializes the database."""
        print("Dropping all tables...")
        db.drop_all()
        db.create_all()
        initialize_database()
        print("Database has been reset.")
