import mongomock
import pytest

import database

# every module binds `from database import db` at import, so swap it first
database.client = mongomock.MongoClient(tz_aware=True)
database.db = database.client["storefront_test"]

import sms  # noqa: E402
from auth_service import issue_session, new_uid  # noqa: E402
from database import create_document  # noqa: E402
from order_service import OrderDetails  # noqa: E402
from schemas import Address, OrderItem, Pincode, Product, User  # noqa: E402


class FakeSMSProvider:
    name = "fake"

    def __init__(self):
        self.sent = []
        self.error = None

    def send(self, phone, message):
        if self.error is not None:
            raise self.error
        self.sent.append((phone, message))
        return f"req-{len(self.sent)}"


@pytest.fixture(autouse=True)
def clean_db():
    yield
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)


@pytest.fixture(autouse=True)
def sms_outbox(monkeypatch):
    fake = FakeSMSProvider()
    monkeypatch.setattr(sms, "provider", fake)
    return fake


@pytest.fixture
def db():
    return database.db


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def catalogue():
    for pin in (
        Pincode(pincode="600001", area_name="George Town", branch_code="MAIN", branch_name="Chennai Central", delivery_charge=0),
        Pincode(pincode="600042", area_name="Velachery", branch_code="SOUTH", branch_name="Chennai South", delivery_charge=30),
    ):
        create_document("pincode", pin)
    products = {}
    for prod in (
        Product(name="Tomato", price=60, mrp=75, unit="kg", category_ids=["vegetables"], max_quantity=10),
        Product(name="Spinach", price=20, unit="bunch", category_ids=["greens"]),
        Product(name="Alphonso Mango", price=150, unit="dozen", category_ids=["fruits"], is_pre_order=True),
        Product(name="Jackfruit", price=90, unit="piece", category_ids=["fruits"], status="inActive"),
    ):
        products[prod.name.split()[-1].lower()] = create_document("product", prod)
    return products


@pytest.fixture
def make_customer(catalogue):
    def make(phone="+919876543210", name="Priya Raman", role="customer", pincode="600001"):
        address = Address(
            address_id=1700000000000,
            address_name="Home",
            address_lines="12 Gandhi Street",
            pincode=pincode,
            phone_number=phone,
            branch_code="MAIN",
            branch_name="Chennai Central",
        )
        user = User(uid=new_uid(phone), display_name=name, phone_number=phone, role=role, addresses=[address])
        user_id = create_document("user", user)
        token = issue_session(phone, user.uid, user_id)
        return {
            "user": database.db["user"].find_one({"uid": user.uid}),
            "token": token,
            "headers": {"Authorization": f"Bearer {token}"},
        }

    return make


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def order_details(customer):
    def make(**overrides):
        user = customer["user"]
        fields = dict(
            customer_id=user["uid"],
            customer_name=user["display_name"],
            phone_number=user["phone_number"],
            address=user["addresses"][0],
            items=[
                OrderItem(product_id="tomato", name="Tomato", unit="kg", quantity=2, price=60, mrp=75),
                OrderItem(product_id="spinach", name="Spinach", unit="bunch", quantity=2, price=20, mrp=24),
            ],
            subtotal=160,
            grand_total=160,
        )
        fields.update(overrides)
        return OrderDetails(**fields)

    return make
