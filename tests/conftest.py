import fakeredis
import pytest

from services.cart_service.cart_store import Product
from shared.schemas import Address
from tests.fakes import FakeProducer


@pytest.fixture()
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def fake_producer():
    return FakeProducer()


@pytest.fixture()
def laptop():
    return Product.model_validate(
        {
            "_id": "1",
            "name": "Laptop",
            "price": 1000,
            "stock": 10,
            "images": [{"url": "/img/laptop.jpg"}],
            "sku": "LAP-1",
        }
    )


@pytest.fixture()
def headphones():
    return Product.model_validate({"_id": "2", "name": "Headphones", "price": 500, "stock": 5})


@pytest.fixture()
def home_address():
    return Address(
        id="addr-1",
        type="home",
        name="Asha Rao",
        phone="9876543210",
        address_line1="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
        is_default=True,
    )


@pytest.fixture()
def work_address():
    return Address(
        id="addr-2",
        type="work",
        name="Asha Rao",
        phone="9123456780",
        address_line1="4th Floor, Tech Park",
        city="Pune",
        state="Maharashtra",
        pincode="411001",
    )
