"""Tests for the HTTP surface in main.py."""

import pytest
from fastapi.testclient import TestClient

from iva_ledger.storage import MemoryStorage
from iva_ledger.store import LedgerStore
import main
from main import app, get_store

CCF_SALE = {"date": "2024-03-10", "documentType": "CCF", "clientNrc": "1234567-8", "taxableAmount": 150}


class TestApi:
    @pytest.fixture(autouse=True)
    def setup(self):
        self.store = LedgerStore(MemoryStorage())
        app.dependency_overrides[get_store] = lambda: self.store
        self.client = TestClient(app)
        yield
        app.dependency_overrides.clear()

    def test_health(self):
        resp = self.client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_version(self):
        assert "app_version" in self.client.get("/version").json()

    def test_client_crud(self):
        resp = self.client.post("/clients", json={"name": "ACME", "nit": "0614-1", "nrc": "1-1"})
        assert resp.status_code == 201
        client_id = resp.json()["id"]

        resp = self.client.put(f"/clients/{client_id}", json={"address": "San Salvador"})
        assert resp.json()["address"] == "San Salvador"
        assert len(self.client.get("/clients").json()) == 1

        assert self.client.delete(f"/clients/{client_id}").json() == {"deleted": True}
        assert self.client.get("/clients").json() == []

    def test_supplier_validation_error(self):
        resp = self.client.post("/suppliers", json={"name": "Sin NIT"})
        assert resp.status_code == 400

    def test_create_sale(self):
        resp = self.client.post("/sales", json=CCF_SALE)
        assert resp.status_code == 201
        body = resp.json()
        assert body["ivaDebit"] == 19.5
        assert body["total"] == 169.5
        assert body["correlative"] == 1

    def test_sale_missing_nrc(self):
        resp = self.client.post("/sales", json={**CCF_SALE, "clientNrc": ""})
        assert resp.status_code == 400
        assert "NRC" in resp.json()["detail"]

    def test_update_missing_sale(self):
        resp = self.client.put("/sales/nope", json={"taxableAmount": 1})
        assert resp.status_code == 404

    def test_invalid_json_body(self):
        resp = self.client.post("/sales", content="not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_json_must_be_object(self):
        resp = self.client.post("/purchases", json=[1, 2])
        assert resp.status_code == 400

    def test_correlatives_override(self):
        resp = self.client.put("/correlatives", json={"salesCCF": 10})
        assert resp.json()["salesCCF"] == 10
        assert self.client.post("/sales", json=CCF_SALE).json()["correlative"] == 10

    def test_correlatives_rejected(self):
        resp = self.client.put("/correlatives", json={"salesCCF": 0})
        assert resp.status_code == 400

    def test_company(self):
        resp = self.client.put("/company", json={"name": "Mi Empresa", "nit": "0614-1"})
        assert resp.status_code == 200
        assert self.client.get("/company").json()["name"] == "Mi Empresa"

    def test_template_and_bulk_import(self):
        template = self.client.get("/export/template").text
        assert "TEMPLATE_START" in template
        resp = self.client.post("/import/bulk", content=template.encode("utf-8"))
        assert resp.json()["imported"]["salesRecords"] == 2

    def test_bulk_import_without_markers(self):
        resp = self.client.post("/import/bulk", content=b"a,b\n1,2\n")
        assert resp.status_code == 400

    def test_backup_restore(self):
        self.client.post("/sales", json=CCF_SALE)
        backup = self.client.get("/export/backup").text
        self.client.post("/reset")
        assert self.client.get("/sales").json() == []

        resp = self.client.post("/import/backup", content=backup.encode("utf-8-sig"))
        assert resp.json() == {"status": "restored"}
        assert len(self.client.get("/sales").json()) == 1

    def test_backup_restore_rejects_incomplete(self):
        resp = self.client.post("/import/backup", content=b'{"clients": []}')
        assert resp.status_code == 400

    def test_json_export(self):
        self.client.post("/sales", json=CCF_SALE)
        data = self.client.get("/export/json").json()
        assert data["salesRecords"][0]["total"] == 169.5

    def test_summary(self):
        self.client.post("/sales", json=CCF_SALE)
        resp = self.client.get("/reports/summary", params={"year": 2024, "month": 3})
        assert resp.json()["ivaDebit"] == 19.5

    def test_summary_bad_month(self):
        resp = self.client.get("/reports/summary", params={"year": 2024, "month": 13})
        assert resp.status_code == 400


def test_unloadable_ledger_file_is_not_replaced(monkeypatch, tmp_path):
    path = tmp_path / "ledger.json"
    content = '{"salesRecords": [{"id": "s1", "date": "31/31/2024"}]}'
    path.write_text(content, encoding="utf-8")
    monkeypatch.setenv("IVA_LEDGER_DATA_FILE", str(path))
    monkeypatch.setattr(main, "_store", None)

    client = TestClient(app)
    assert client.get("/clients").status_code == 503
    assert client.post("/clients", json={"name": "A", "nit": "1"}).status_code == 503
    assert path.read_text(encoding="utf-8") == content
