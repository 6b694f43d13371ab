import base64
from datetime import date, datetime, timedelta

import httpx
import pytest

from profit_auditor.models import EcommerceMetric, EcommerceProduct, EcommerceSale, Integration
from profit_auditor.services.ecommerce_metrics import calculate_daily_metrics
from profit_auditor.services.ecommerce_sync import SyncError, sync_integration
from profit_auditor.services.sync_scheduler import run_scheduled_sync

SHOPIFY_PRODUCTS = {
    "products": [
        {"id": 1, "title": "Mug", "variants": [{"sku": "MUG-1", "price": "10.00", "inventory_quantity": 5}]},
        {"id": 2, "title": "Lamp", "variants": [{"price": "25.50"}]},
    ]
}

SHOPIFY_ORDERS = {
    "orders": [
        {
            "id": 1001,
            "currency": "GBP",
            "created_at": "2024-03-05T10:00:00-05:00",
            "line_items": [
                {"product_id": 1, "quantity": 2, "price": "10.00"},
                {"product_id": 2, "quantity": 1, "price": "25.50"},
            ],
        },
        {
            # Lands on the 6th once converted to UTC
            "id": 1002,
            "currency": "GBP",
            "created_at": "2024-03-05T23:30:00-02:00",
            "line_items": [{"product_id": 1, "quantity": 1, "price": "10.00"}],
        },
    ]
}

WOO_PRODUCTS = [{"id": 7, "name": "Tea", "sku": "T1", "price": "4.50", "stock_quantity": 20}]
WOO_ORDERS = [
    {
        "id": 55,
        "currency": "GBP",
        "date_created": "2024-03-05T09:00:00",
        "line_items": [{"product_id": 7, "quantity": 3, "price": 4.5, "total": "13.50"}],
    }
]


class StoreAPI:
    """Serves canned store responses and remembers what was asked"""

    def __init__(self, failing_hosts=()):
        self.requests = []
        self.failing_hosts = set(failing_hosts)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host in self.failing_hosts:
            return httpx.Response(500)

        path = request.url.path
        if path == "/admin/api/2024-01/products.json":
            return httpx.Response(200, json=SHOPIFY_PRODUCTS)
        if path == "/admin/api/2024-01/orders.json":
            return httpx.Response(200, json=SHOPIFY_ORDERS)
        if path == "/wp-json/wc/v3/products":
            return httpx.Response(200, json=WOO_PRODUCTS)
        if path == "/wp-json/wc/v3/orders":
            return httpx.Response(200, json=WOO_ORDERS)
        return httpx.Response(404)

    def client(self):
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def add_integration(db, platform="shopify", store_url="mystore.myshopify.com", category="ecommerce", **kwargs):
    credentials = kwargs.pop("credentials", {"access_token": "shpat_test"})
    integration = Integration(
        user_id="user-1", category=category, platform=platform, store_url=store_url,
        credentials=credentials, is_active=True, **kwargs
    )
    db.add(integration)
    db.commit()
    return integration


def test_create_and_list_integrations(client):
    response = client.post("/integrations", json={
        "user_id": "user-1",
        "category": "Ecommerce",
        "platform": "Shopify",
        "store_url": "mystore.myshopify.com",
        "credentials": {"access_token": "secret"},
        "metadata": {"plan": "basic"},
    })
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["category"] == "ecommerce"
    assert data["platform"] == "shopify"
    assert data["metadata"] == {"plan": "basic"}
    assert "credentials" not in data
    assert data["credential_keys"] == ["access_token"]

    client.post("/integrations", json={"user_id": "user-1", "category": "payment", "platform": "stripe"})

    everything = client.get("/integrations", params={"user_id": "user-1"}).json()["integrations"]
    assert len(everything) == 2
    payments = client.get("/integrations", params={"user_id": "user-1", "category": "payment"}).json()
    assert [i["platform"] for i in payments["integrations"]] == ["stripe"]
    assert "secret" not in str(everything)


@pytest.mark.parametrize("payload,message", [
    ({"category": "payment", "platform": "shopify"}, "Unsupported payment platform"),
    ({"category": "telepathy", "platform": "shopify"}, "Unknown integration category"),
])
def test_create_integration_rejects_unknown_platforms(client, payload, message):
    response = client.post("/integrations", json={"user_id": "user-1", **payload})
    assert response.status_code == 400
    assert message in response.json()["error"]


def test_delete_integration_removes_store_data(client, db_session):
    integration = add_integration(db_session)
    db_session.add(EcommerceProduct(integration_id=integration.id, user_id="user-1", platform_product_id="1", name="Mug"))
    db_session.commit()

    response = client.delete(f"/integrations/{integration.id}")
    assert response.status_code == 200
    assert db_session.query(EcommerceProduct).count() == 0
    assert client.delete(f"/integrations/{integration.id}").status_code == 404


@pytest.mark.asyncio
async def test_shopify_sync(db_session):
    integration = add_integration(db_session)
    api = StoreAPI()

    async with api.client() as http:
        counts = await sync_integration(db_session, integration, client=http)

    assert counts == {"products_synced": 2, "sales_synced": 3}
    assert [r.headers["X-Shopify-Access-Token"] for r in api.requests] == ["shpat_test", "shpat_test"]
    assert api.requests[0].url.host == "mystore.myshopify.com"
    assert api.requests[1].url.params["status"] == "any"

    mug = db_session.query(EcommerceProduct).filter_by(platform_product_id="1").one()
    assert mug.name == "Mug"
    assert mug.sku == "MUG-1"
    assert mug.price == 10.0
    assert mug.inventory_quantity == 5

    lamp_sale = db_session.query(EcommerceSale).filter_by(order_id="1001", product_id="2").one()
    assert lamp_sale.total_price == 25.5
    assert lamp_sale.currency == "GBP"
    assert lamp_sale.sale_date == datetime(2024, 3, 5, 15, 0)

    late_sale = db_session.query(EcommerceSale).filter_by(order_id="1002").one()
    assert late_sale.sale_date == datetime(2024, 3, 6, 1, 30)
    assert integration.last_sync_at is not None
    result = integration.extra_metadata["last_sync_result"]
    assert result["products_count"] == 2
    assert result["sales_count"] == 3
    assert result["sync_time"] == integration.last_sync_at.isoformat()


@pytest.mark.asyncio
async def test_resync_updates_instead_of_duplicating(db_session):
    integration = add_integration(db_session)
    api = StoreAPI()

    async with api.client() as http:
        await sync_integration(db_session, integration, client=http)
        await sync_integration(db_session, integration, client=http)

    assert db_session.query(EcommerceProduct).count() == 2
    assert db_session.query(EcommerceSale).count() == 3


@pytest.mark.asyncio
async def test_woocommerce_sync_uses_basic_auth(db_session):
    integration = add_integration(
        db_session, platform="woocommerce", store_url="https://shop.example.com/",
        credentials={"api_key": "ck_1", "api_secret": "cs_2"},
    )
    api = StoreAPI()

    async with api.client() as http:
        counts = await sync_integration(db_session, integration, client=http)

    assert counts == {"products_synced": 1, "sales_synced": 1}
    expected = "Basic " + base64.b64encode(b"ck_1:cs_2").decode()
    assert all(r.headers["Authorization"] == expected for r in api.requests)
    assert [r.url.path for r in api.requests] == ["/wp-json/wc/v3/products", "/wp-json/wc/v3/orders"]

    sale = db_session.query(EcommerceSale).one()
    assert sale.quantity == 3
    assert sale.total_price == 13.5
    assert sale.sale_date == datetime(2024, 3, 5, 9, 0)


@pytest.mark.asyncio
async def test_store_error_stores_nothing(db_session):
    integration = add_integration(db_session)
    api = StoreAPI(failing_hosts={"mystore.myshopify.com"})

    async with api.client() as http:
        with pytest.raises(SyncError, match="500"):
            await sync_integration(db_session, integration, client=http)

    assert db_session.query(EcommerceProduct).count() == 0
    assert integration.last_sync_at is None


@pytest.mark.asyncio
async def test_daily_metrics_after_sync(db_session):
    integration = add_integration(db_session)
    async with StoreAPI().client() as http:
        await sync_integration(db_session, integration, client=http)

    metrics = calculate_daily_metrics(db_session, integration, date(2024, 3, 5))
    assert metrics["daily_revenue"] == pytest.approx(45.5)
    assert metrics["total_orders"] == 1
    assert metrics["average_order_value"] == pytest.approx(45.5)
    assert metrics["products_sold"] == 3
    assert [p["name"] for p in metrics["top_products"]] == ["Lamp", "Mug"]
    assert metrics["customer_metrics"] == {"unique_customers": 2, "average_lifetime_value": pytest.approx(27.75)}

    # Recalculating the same day updates the stored row
    calculate_daily_metrics(db_session, integration, date(2024, 3, 5))
    assert db_session.query(EcommerceMetric).count() == 1


def test_sync_unsupported_platform(client, db_session):
    integration = add_integration(db_session, platform="magento")
    response = client.post("/sync-ecommerce", json={"integration_id": integration.id})
    assert response.status_code == 400
    assert response.json()["error"] == "Unsupported platform: magento"


def test_sync_unknown_integration(client):
    assert client.post("/sync-ecommerce", json={"integration_id": 42}).status_code == 404


def test_calculate_metrics_endpoint(client, db_session):
    integration = add_integration(db_session)
    db_session.add_all([
        EcommerceSale(integration_id=integration.id, user_id="user-1", order_id="A", product_id="9",
                      quantity=2, unit_price=5.0, total_price=10.0, sale_date=datetime(2024, 5, 1, 12)),
        EcommerceSale(integration_id=integration.id, user_id="user-1", order_id="B", product_id="9",
                      quantity=1, unit_price=5.0, total_price=5.0, sale_date=datetime(2024, 5, 1, 18)),
    ])
    db_session.commit()

    response = client.post("/calculate-ecommerce-metrics", json={"integration_id": integration.id, "date": "2024-05-01"})
    assert response.status_code == 200
    metrics = response.json()["metrics"]
    assert metrics["daily_revenue"] == 15.0
    assert metrics["total_orders"] == 2
    assert metrics["average_order_value"] == 7.5
    assert metrics["top_products"][0]["name"] == "Unknown product"


def test_metrics_for_quiet_day(db_session):
    integration = add_integration(db_session)
    metrics = calculate_daily_metrics(db_session, integration, date(2024, 1, 1))
    assert metrics["daily_revenue"] == 0
    assert metrics["average_order_value"] == 0
    assert metrics["top_products"] == []
    assert metrics["customer_metrics"]["average_lifetime_value"] == 0


@pytest.mark.asyncio
async def test_scheduled_sync_isolates_failures(db_session):
    good = add_integration(db_session, sync_frequency=3600)
    bad = add_integration(db_session, platform="woocommerce", store_url="https://broken.example.com",
                          credentials={"api_key": "k", "api_secret": "s"})
    add_integration(db_session, platform="xero", category="accounting", store_url=None)
    add_integration(db_session, next_sync_at=datetime.utcnow() + timedelta(hours=1))

    async with StoreAPI(failing_hosts={"broken.example.com"}).client() as http:
        results = await run_scheduled_sync(db_session, client=http)

    by_id = {r["integration_id"]: r for r in results}
    assert set(by_id) == {good.id, bad.id}

    assert by_id[good.id]["success"] is True
    assert by_id[good.id]["products_synced"] == 2
    assert good.last_sync_status["status"] == "success"
    assert timedelta(minutes=59) < good.next_sync_at - datetime.utcnow() <= timedelta(hours=1)
    assert db_session.query(EcommerceMetric).filter_by(integration_id=good.id).count() == 1

    assert by_id[bad.id]["success"] is False
    assert "500" in by_id[bad.id]["error"]
    assert bad.last_sync_status["status"] == "error"
    assert bad.next_sync_at is not None


@pytest.mark.asyncio
async def test_metrics_failure_keeps_successful_sync(db_session, monkeypatch):
    integration = add_integration(db_session, extra_metadata={"plan": "basic"})

    def broken_metrics(*args, **kwargs):
        raise RuntimeError("metrics table locked")

    monkeypatch.setattr("profit_auditor.services.sync_scheduler.calculate_daily_metrics", broken_metrics)

    async with StoreAPI().client() as http:
        results = await run_scheduled_sync(db_session, client=http)

    assert len(results) == 1
    assert results[0]["success"] is True
    assert results[0]["sales_synced"] == 3
    assert integration.last_sync_status["status"] == "success"
    assert integration.extra_metadata["plan"] == "basic"
    assert db_session.query(EcommerceSale).count() == 3


def test_scheduled_sync_endpoint(client, db_session):
    add_integration(db_session, store_url=None)
    body = client.post("/scheduled-sync").json()
    assert body["success"] is True
    assert body["syncs_processed"] == 1
    assert body["results"][0]["success"] is False
    assert body["results"][0]["error"] == "Integration has no store URL"


def test_transactions(client):
    now = datetime.utcnow()
    created = client.post("/transactions", json={
        "user_id": "user-1", "transaction_date": now.isoformat(), "type": "income", "amount": 120.5,
        "description": "Wholesale order",
    })
    assert created.status_code == 200
    assert created.json()["data"]["currency"] == "GBP"

    client.post("/transactions", json={
        "user_id": "user-1", "transaction_date": (now - timedelta(days=60)).isoformat(), "type": "expense", "amount": 40,
    })

    recent = client.get("/transactions", params={"user_id": "user-1"}).json()["transactions"]
    assert [t["amount"] for t in recent] == [120.5]
    everything = client.get("/transactions", params={"user_id": "user-1", "days": 90}).json()["transactions"]
    assert len(everything) == 2


def test_transaction_type_is_validated(client):
    response = client.post("/transactions", json={
        "user_id": "user-1", "transaction_date": "2024-03-01T00:00:00", "type": "refund", "amount": 10,
    })
    assert response.status_code == 400
