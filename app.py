import logging
from decimal import Decimal

import click
from flask import Flask

from config import Config
from models import FoodItem, SubscriptionPlan
from sql_db import SessionLocal, init_db
from auth import load_current_user
from errors import register_error_handlers
from payments import PaymentGateway
from secret_store import get_secret
from routes_auth import auth_bp
from routes_api import api
from routes_account import wallet_bp, subs_bp
from routes_admin import admin
from routes_payments import payments_bp

SECRET_NAMES = ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")

DEFAULT_PLANS = [
    ("Weekly Basic", "Basic meal plan for one week", 499, 7, 2),
    ("Weekly Premium", "Premium meal plan for one week", 699, 7, 3),
    ("Monthly Basic", "Basic meal plan for one month", 1899, 30, 2),
    ("Monthly Premium", "Premium meal plan for one month", 2699, 30, 3),
]

DEFAULT_MENU = [
    ("Masala Dosa", "Crispy dosa with potato filling", 60, "Breakfast", "dosa.jpg"),
    ("Idli Sambar", "Steamed idlis with sambar and chutney", 40, "Breakfast", "idli.jpg"),
    ("Veg Biryani", "Basmati rice with mixed vegetables", 120, "Meals", "veg_biryani.jpg"),
    ("Chicken Biryani", "Hyderabadi dum biryani", 160, "Meals", "chicken_biryani.jpg"),
    ("Samosa", "Two samosas with mint chutney", 20, "Snacks", "samosa.jpg"),
    ("Cold Coffee", "Chilled coffee with ice cream", 60, "Beverages", "coffee.jpg"),
]


# -----------------------
# AUTO INSERT DEFAULT DATA
# -----------------------
def insert_default_data():
    added = 0
    with SessionLocal() as s:
        if s.query(SubscriptionPlan).count() == 0:
            for name, description, price, duration, meals in DEFAULT_PLANS:
                s.add(SubscriptionPlan(
                    name=name, description=description, price=Decimal(price),
                    duration=duration, meals_per_day=meals, is_active=True,
                ))
                added += 1

        if s.query(FoodItem).count() == 0:
            for name, description, price, category, image in DEFAULT_MENU:
                s.add(FoodItem(
                    name=name, description=description, price=Decimal(price),
                    category=category, image_url=image, available=True,
                ))
                added += 1

        s.commit()
    return added


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    init_db(app.config["SQLALCHEMY_DATABASE_URI"])

    # gateway keys: config override, else Secret Manager / env
    for name in SECRET_NAMES:
        if name not in app.config:
            app.config[name] = get_secret(name)
    app.extensions["payment_gateway"] = PaymentGateway.from_config(app.config)

    register_error_handlers(app)
    app.before_request(load_current_user)

    app.register_blueprint(auth_bp)
    app.register_blueprint(api)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(subs_bp)
    app.register_blueprint(admin)
    app.register_blueprint(payments_bp)

    @app.cli.command("seed")
    def seed_command():
        """Insert the default plans and starter menu into empty tables."""
        added = insert_default_data()
        click.echo(f"Seeded {added} rows.")

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
