import os
import sys
from io import BytesIO

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from conftest import disbursements_frame, purchase_orders_frame
from api.routers.catalog import router as catalog_router
from api.routers.system import router as system_router
from services.catalog_service import CatalogService

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _xlsx(frame):
    buffer = BytesIO()
    frame.to_excel(buffer, index=False)
    return buffer.getvalue()


@pytest.fixture
def api_app(store, stub_llm):
    app = FastAPI()
    app.include_router(system_router)
    app.include_router(catalog_router)
    app.state.store = store
    app.state.catalog_service = CatalogService(store, stub_llm)
    return app


@pytest.fixture
def client(api_app):
    return TestClient(api_app)


def _upload(client, name, frame):
    return client.post("/upload", files={"file": (name, _xlsx(frame), XLSX_TYPE)})


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_upload_registers_table_with_original_labels(client):
    response = _upload(client, "Commandes 2024.xlsx", purchase_orders_frame())
    assert response.status_code == 200
    body = response.json()
    assert body["table"] == "commandes_2024"
    assert body["rows"] == 4

    schema = client.get("/schema").json()
    columns = {col["name"]: col["original"] for col in schema["commandes_2024"]}
    assert columns["po_line_number"] == "PO Line Number"


def test_upload_rejects_unsupported_files(client):
    response = client.post("/upload", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert response.status_code == 400


def test_upload_cannot_replace_catalogue_tables(client):
    response = _upload(client, "Catalog Line Map.xlsx", purchase_orders_frame())
    assert response.status_code == 400
    assert "reserved" in response.json()["detail"]


def test_build_then_query_catalogue(client):
    _upload(client, "commandes.xlsx", purchase_orders_frame())
    _upload(client, "reglements.xlsx", disbursements_frame())

    build = client.post("/catalog/build")
    assert build.status_code == 200
    assert build.json()["tables"]["purchase_orders"] == "commandes"

    summary = client.get("/catalog/summary").json()
    assert summary["suppliers"] == ["Acme", "Chairly", "Lapco"]

    profile = client.get("/catalog/profile", params={"subcategory": "Consulting", "supplier": "Acme"})
    assert profile.status_code == 200
    assert profile.json()["stats"]["n_payments"] == 3
    assert profile.json()["points"][0]["payment_date"] == "2024-01-06"

    exported = client.get("/catalog/export").json()
    assert len(exported["mappings"]) == 4

    imported = client.post("/catalog/import", json=exported)
    assert imported.status_code == 200
    assert imported.json()["mappings"] == 4


def test_profile_missing_parameter_is_400(client):
    response = client.get("/catalog/profile", params={"subcategory": "Consulting"})
    assert response.status_code == 400
    assert "missing parameter" in response.json()["detail"]


def test_build_without_tables_is_422(client):
    response = client.post("/catalog/build")
    assert response.status_code == 422
    assert response.json()["detail"] == "No tables are loaded."


def test_build_in_progress_is_409(client, api_app):
    lock = api_app.state.catalog_service._build_lock
    lock.acquire()
    try:
        assert client.post("/catalog/build").status_code == 409
        assert client.get("/catalog/summary").status_code == 409
        assert client.get("/catalog/export").status_code == 409
    finally:
        lock.release()


def test_import_rejects_invalid_catalogue(client):
    response = client.post("/catalog/import", json={"taxonomy": "nope"})
    assert response.status_code == 400


def test_missing_service_is_503():
    app = FastAPI()
    app.include_router(catalog_router)
    assert TestClient(app).get("/catalog/summary").status_code == 503
