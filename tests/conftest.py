import pytest

import sql_db
import receipts
from app import create_app
from config import Config
from errors import UpstreamPaymentError
from payments import PaymentGateway

from helpers import WEBHOOK_SECRET, add_food, make_admin, register


class FakeGateway(PaymentGateway):
    """Records intents instead of calling the payment API."""

    def __init__(self):
        super().__init__(
            api_key="sk_test",
            api_base="https://payments.invalid/v1",
            timeout=1,
            webhook_secret=WEBHOOK_SECRET,
        )
        self.created = []
        self.fail_next = False

    def create_intent(self, amount, currency, metadata):
        if self.fail_next:
            self.fail_next = False
            raise UpstreamPaymentError()
        n = len(self.created) + 1
        self.created.append({"amount": amount, "currency": currency, "metadata": metadata})
        return {"id": f"pi_test_{n}", "client_secret": f"pi_test_{n}_secret_x"}


@pytest.fixture
def app(tmp_path, monkeypatch):
    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"
        STRIPE_SECRET_KEY = "sk_test"
        STRIPE_WEBHOOK_SECRET = WEBHOOK_SECRET
        IMAGE_UPLOAD_DIR = str(tmp_path / "images")
        EVENT_LOG_ENABLED = False
        DELIVERY_FEE = "10"

    monkeypatch.setattr(receipts, "get_secret", lambda name: None)

    app = create_app(TestConfig)
    app.extensions["payment_gateway"] = FakeGateway()
    yield app
    sql_db.engine.dispose()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def user_client(app):
    c = app.test_client()
    resp = register(c)
    assert resp.status_code == 200
    c.user = resp.get_json()["user"]
    return c


@pytest.fixture
def other_client(app):
    c = app.test_client()
    resp = register(c, email="ravi@mlrit.ac.in", name="Ravi")
    assert resp.status_code == 200
    c.user = resp.get_json()["user"]
    return c


@pytest.fixture
def admin_client(app):
    c = app.test_client()
    resp = register(c, email="canteen.admin@mlrit.ac.in", name="Canteen Admin")
    assert resp.status_code == 200
    make_admin("canteen.admin@mlrit.ac.in")
    c.user = resp.get_json()["user"]
    return c


@pytest.fixture
def menu(app):
    return {
        "dosa": add_food("Masala Dosa", 60, category="Breakfast"),
        "biryani": add_food("Veg Biryani", 120),
        "thali": add_food("Special Thali", 150, available=False),
    }
