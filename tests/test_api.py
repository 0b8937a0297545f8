import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import gazelle_xlsx, shopify_csv
from main import WriteRateLimitMiddleware, app
from routers.uploads import get_storage

ORDERS = shopify_csv(
    {"Name": "#1001", "Created at": "2024-01-15 10:30:00 +0000", "Lineitem name": "Book A",
     "Lineitem quantity": "3", "Lineitem price": "12.50", "Billing Name": "Jane Doe", "Billing Country": "UK"},
    {"Name": "#1001", "Lineitem name": "Book B", "Lineitem quantity": "1", "Lineitem price": "8.00",
     "Billing Company": "Acme Ltd"},
)


@pytest.fixture
def client(sqlite_store):
    app.dependency_overrides[get_storage] = lambda: sqlite_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _upload(client, content, filename, content_type="text/csv", **form):
    return client.post("/api/upload", files={"file": (filename, content, content_type)}, data=form)


def test_upload_returns_summary(client):
    resp = _upload(client, ORDERS, "orders_export.csv", uploadBatchId="batch-1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["dataType"] == "format-a"
    assert body["insertedCount"] == 2
    assert body["skipped"] == 0
    assert body["unknownCustomers"] == 0
    assert body["uploadBatchId"] == "batch-1"
    assert {r["customer_name"] for r in body["inserted"]} == {"Acme Ltd"}
    assert body["inserted"][0]["total"] == "37.50"


def test_second_identical_upload_is_all_duplicates(client):
    _upload(client, ORDERS, "orders_export.csv")
    body = _upload(client, ORDERS, "orders_export.csv").json()
    assert body["insertedCount"] == 0
    assert body["inserted"] == []
    assert body["skipped"] == 2


def test_spreadsheet_upload(client):
    content = gazelle_xlsx(
        [datetime(2024, 1, 15), "G-1", 1234, "Waterstones", None, "Book A", None, "9780000000011", 3, 37.5],
    )
    ctype = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    body = _upload(client, content, "gazelle.xlsx", content_type=ctype).json()
    assert body["dataType"] == "format-b"
    assert body["inserted"][0]["customer_number"] == "1234"


def test_aliases_from_database_apply_to_uploads(client):
    assert client.post("/api/customers/aliases", json={"rawName": "acme ltd", "canonicalName": "Acme"}).status_code == 200
    body = _upload(client, ORDERS, "orders_export.csv").json()
    assert {r["customer_name"] for r in body["inserted"]} == {"Acme"}


@pytest.mark.parametrize("filename,content,status", [
    ("report.pdf", b"%PDF", 400),
    ("orders.csv", b"", 400),
    ("orders.csv", b"Name,Lineitem name\n", 422),
    ("sales.xlsx", b"not a workbook", 422),
])
def test_upload_rejections(client, filename, content, status):
    resp = _upload(client, content, filename)
    assert resp.status_code == status
    assert "error" in resp.json()


def test_invalid_data_type(client):
    resp = _upload(client, ORDERS, "orders.csv", dataType="format-z")
    assert resp.status_code == 400


def test_records_listing_and_delete(client):
    _upload(client, ORDERS, "orders_export.csv", uploadBatchId="batch-1")
    records = client.get("/api/records", params={"uploadBatchId": "batch-1"}).json()
    assert len(records) == 2

    record_id = records[0]["id"]
    assert client.delete(f"/api/records/{record_id}").json() == {"success": True}
    assert client.delete(f"/api/records/{record_id}").status_code == 404
    assert len(client.get("/api/records").json()) == 1


def test_upload_log_lists_uploads(client):
    _upload(client, ORDERS, "orders_export.csv", uploadBatchId="batch-1")
    _upload(client, ORDERS, "orders_export.csv", uploadBatchId="batch-2")
    log = client.get("/api/upload-log").json()
    assert sorted((e["uploadBatchId"], e["recordsCount"], e["skippedCount"]) for e in log) == [
        ("batch-1", 2, 0),
        ("batch-2", 0, 2),
    ]


def test_customer_report_update_and_exclusions(client):
    _upload(client, ORDERS, "orders_export.csv")

    customers = client.get("/api/customers").json()
    assert [c["customer_name"] for c in customers["customers"]] == ["Acme Ltd"]
    assert customers["stats"]["total_revenue"] == "45.50"

    resp = client.post("/api/customers/update", json={"customerName": "Acme Ltd", "field": "country", "value": "Ireland"})
    assert resp.json() == {"success": True, "updated": 2}
    assert client.get("/api/customers").json()["customers"][0]["country"] == "Ireland"

    bad = client.post("/api/customers/update", json={"customerName": "Acme Ltd", "field": "title", "value": "x"})
    assert bad.status_code == 400

    assert client.post("/api/customers/exclusions", json={"customerName": "Acme Ltd"}).status_code == 200
    assert client.get("/api/customers").json()["customers"] == []
    assert client.get("/api/customers/exclusions").json() == {"exclusions": ["Acme Ltd"]}
    assert client.delete("/api/customers/exclusions/Acme Ltd").status_code == 200
    assert client.delete("/api/customers/exclusions/Acme Ltd").status_code == 404


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_upload_reports_the_request_id_it_was_served_under(client):
    resp = _upload(client, ORDERS, "orders_export.csv")
    assert resp.json()["requestId"] == resp.headers["X-Request-Id"]
    assert resp.json()["uploadBatchId"] == resp.headers["X-Request-Id"]


def test_caller_request_id_is_echoed(client):
    resp = client.post(
        "/api/upload",
        files={"file": ("orders_export.csv", ORDERS, "text/csv")},
        headers={"X-Request-Id": "rid-42"},
    )
    assert resp.headers["X-Request-Id"] == "rid-42"
    assert resp.json()["requestId"] == "rid-42"


def test_write_rate_limit_leaves_reads_alone():
    limited = FastAPI()
    limited.add_middleware(WriteRateLimitMiddleware, requests_per_minute=2)

    @limited.get("/api/records")
    async def read():
        return []

    @limited.post("/api/upload")
    async def write():
        return {"ok": True}

    with TestClient(limited) as tc:
        assert [tc.post("/api/upload").status_code for _ in range(3)] == [200, 200, 429]
        assert all(tc.get("/api/records").status_code == 200 for _ in range(5))
