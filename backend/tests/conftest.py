"""
Pytest fixtures for storefront backend tests.

Provides the app against in-memory SQLite, a fresh document store per test,
fake outbound clients (payment gateway, SMS) and seeded store/catalog data.
"""

import pytest

from storefront import create_app
from storefront.errors import UpstreamError
from storefront.extensions import db
from storefront.services import document_store as store
from storefront.services import session_service
from storefront.services.payment_gateway import PaymentUrl, RefundResult, webhook_auth_hash


WEBHOOK_USER = "gateway"
WEBHOOK_PASS = "s3cret"

STORE_ID = "S1"
STORE_ADMIN_ID = "SA1"
CUSTOMER_ID = "C1"
CUSTOMER_PHONE = "9990001111"
OTHER_CUSTOMER_ID = "C2"
OTHER_CUSTOMER_PHONE = "9990002222"


class FakeGateway:
    """Records every call; payment URLs succeed unless fail_payment_url is set."""

    def __init__(self):
        self.payment_requests = []
        self.refund_requests = []
        self.status_requests = []
        self.fail_payment_url = False
        self.refund_state = "PENDING"
        self.refund_status_state = "COMPLETED"

    def create_payment_url(self, amount_minor_units, merchant_order_id, metadata_tag):
        self.payment_requests.append({
            "amount": amount_minor_units,
            "merchantOrderId": merchant_order_id,
            "tag": metadata_tag,
        })
        if self.fail_payment_url:
            raise UpstreamError("gateway unavailable")
        return PaymentUrl(
            url=f"https://pay.test/checkout/{merchant_order_id}",
            gateway_order_id=f"OMO{len(self.payment_requests)}",
            state="PENDING",
        )

    def refund(self, amount_minor_units, merchant_refund_id, original_merchant_order_id):
        self.refund_requests.append({
            "amount": amount_minor_units,
            "merchantRefundId": merchant_refund_id,
            "originalMerchantOrderId": original_merchant_order_id,
        })
        return RefundResult(refund_id=f"OMR{len(self.refund_requests)}", state=self.refund_state)

    def refund_status(self, merchant_refund_id):
        self.status_requests.append(merchant_refund_id)
        return RefundResult(refund_id="OMR1", state=self.refund_status_state)


class FakeSms:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_order_update(self, **kwargs):
        if self.fail:
            raise RuntimeError("sms provider down")
        self.sent.append(kwargs)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'WEBHOOK_USER': WEBHOOK_USER,
        'WEBHOOK_PASS': WEBHOOK_PASS,
        'MAPS_API_KEY': '',
        'SMS_URL': '',
        'WRITE_RETRY_ATTEMPTS': 3,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty document store and fresh fakes for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions["payment_gateway"] = FakeGateway()
        app.extensions["sms_client"] = FakeSms()
        app.extensions["count_cache"].invalidate()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(app, db_session):
    return app.extensions["payment_gateway"]


@pytest.fixture(scope='function')
def sms(app, db_session):
    return app.extensions["sms_client"]


# =============================================================================
# SEED DATA
# =============================================================================


def seed_store(store_id=STORE_ID, *, delivery_charges=20, delivery_range=5, packaging=0, platform=0,
               coordinates=None, admin_id=STORE_ADMIN_ID):
    address = {"formattedAddress": f"{store_id} Market Road, Pune"}
    if coordinates:
        address["coordinates"] = coordinates
    return store.create(store.STORE_DETAILS, {
        "id": store_id,
        "storeName": f"Fresh Mart {store_id}",
        "phone": "02000000000",
        "address": address,
        "deliveryCharges": delivery_charges,
        "deliveryRange": delivery_range,
        "packagingCharges": packaging,
        "platformCharges": platform,
        "storeAdminId": admin_id,
    })


def seed_inventory(store_id=STORE_ID, *, stock=5, price=100, offer_price=0):
    return store.create(store.STORE_PRODUCT, {
        "id": f"inv-{store_id}",
        "storeId": store_id,
        "products": [{
            "productId": "P1",
            "stock": stock,
            "variants": [{"variantId": "V1", "stock": stock, "price": price, "offerPrice": offer_price}],
        }],
    })


def set_variant_stock(stock, store_id=STORE_ID):
    inventory = store.query_one(store.STORE_PRODUCT, {"storeId": store_id})
    inventory["products"][0]["variants"][0]["stock"] = stock
    inventory["products"][0]["stock"] = stock
    return store.replace(store.STORE_PRODUCT, inventory)


def variant_stock(store_id=STORE_ID):
    inventory = store.query_one(store.STORE_PRODUCT, {"storeId": store_id})
    return inventory["products"][0]["variants"][0]["stock"]


def seed_catalog():
    return store.create(store.PRODUCTS, {
        "id": "P1",
        "name": "Basmati Rice",
        "variants": [{
            "id": "V1",
            "name": "1 kg",
            "type": "weight",
            "value": 1,
            "metrics": "kg",
            "images": ["https://img.test/rice.png"],
        }],
    })


def seed_customer(customer_id=CUSTOMER_ID, phone=CUSTOMER_PHONE):
    return store.create(store.CUSTOMERS, {
        "id": customer_id,
        "name": "Asha",
        "phone": phone,
        "addresses": [{"id": "A1", "formattedAddress": "12 Lake View, Pune"}],
    })


def put_cart(phone=CUSTOMER_PHONE, lines=None):
    lines = lines if lines is not None else [{"productId": "P1", "variantId": "V1", "quantity": 2}]
    existing = store.read_by_id(store.CART_ITEMS, phone)
    if existing is None:
        return store.create(store.CART_ITEMS, {"id": phone, "phone": phone, "products": lines})
    existing["products"] = lines
    return store.replace(store.CART_ITEMS, existing)


@pytest.fixture(scope='function')
def seed(db_session):
    """Store S1 (delivery fee 20), P1/V1 at 100 with stock 5, customer C1 with a 2-unit cart."""
    seed_store()
    seed_catalog()
    seed_inventory()
    seed_customer()
    seed_customer(OTHER_CUSTOMER_ID, OTHER_CUSTOMER_PHONE)
    put_cart()
    return {"store_id": STORE_ID, "customer_id": CUSTOMER_ID, "phone": CUSTOMER_PHONE}


# =============================================================================
# AUTH
# =============================================================================


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def _token(user_id, phone, role):
    _, token = session_service.create_session(user_id, phone, role)
    return token


@pytest.fixture(scope='function')
def customer_headers(seed):
    return auth_headers(_token(CUSTOMER_ID, CUSTOMER_PHONE, session_service.ROLE_CUSTOMER))


@pytest.fixture(scope='function')
def other_customer_headers(seed):
    return auth_headers(_token(OTHER_CUSTOMER_ID, OTHER_CUSTOMER_PHONE, session_service.ROLE_CUSTOMER))


@pytest.fixture(scope='function')
def store_admin_headers(seed):
    return auth_headers(_token(STORE_ADMIN_ID, None, session_service.ROLE_STORE_ADMIN))


@pytest.fixture(scope='function')
def manager_headers(seed):
    return auth_headers(_token(STORE_ID, None, session_service.ROLE_STORE_MANAGER))


@pytest.fixture(scope='function')
def webhook_headers():
    return {'Authorization': webhook_auth_hash(WEBHOOK_USER, WEBHOOK_PASS)}


def gateway_callback(merchant_order_id, state="COMPLETED", *, amount=None, tag=None, transaction_id="T1"):
    """Webhook body as the gateway posts it."""
    payload = {
        "merchantOrderId": merchant_order_id,
        "orderId": f"OMO-{merchant_order_id}",
        "state": state,
        "paymentDetails": [{"transactionId": transaction_id, "paymentMode": "UPI_QR", "state": state}],
    }
    if amount is not None:
        payload["amount"] = amount
    if tag is not None:
        payload["metaInfo"] = {"udf1": tag}
    return {"event": "checkout.order.completed", "payload": payload}
