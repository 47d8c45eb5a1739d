from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from iva_ledger.correlatives import get_next_correlatives, set_sales_correlatives
from iva_ledger.errors import (
    InvalidSnapshotError,
    LedgerError,
    MalformedImportError,
    NotFoundError,
    ValidationError,
)
from iva_ledger.ledger import (
    add_purchase,
    add_sale,
    delete_purchase,
    delete_sale,
    update_purchase,
    update_sale,
)
from iva_ledger.reports import period_summary, purchase_book, sales_book
from iva_ledger.storage import storage_from_env
from iva_ledger.store import LedgerStore
from iva_ledger.transfer import (
    export_backup,
    export_json,
    export_template,
    import_backup_text,
    import_bulk_text,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("iva-ledger")

APP_VERSION = os.getenv("APP_VERSION", "dev")

app = FastAPI(title="IVA Ledger SV")

_store: Optional[LedgerStore] = None


def get_store() -> LedgerStore:
    global _store
    if _store is None:
        try:
            _store = LedgerStore(storage_from_env())
        except InvalidSnapshotError as exc:
            logger.error("Ledger data could not be loaded: %s", exc)
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return _store


_ERROR_STATUS = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    MalformedImportError: status.HTTP_400_BAD_REQUEST,
    InvalidSnapshotError: status.HTTP_400_BAD_REQUEST,
}


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON payload must be an object")
    return payload


async def _read_text(request: Request) -> str:
    body = await request.body()
    if not body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty request body")
    try:
        return body.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be UTF-8 text") from exc


def _wire(records: List[Any]) -> List[Dict[str, Any]]:
    return [record.to_wire() for record in records]


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
async def version() -> Dict[str, Any]:
    return {"status": "ok", "app_version": APP_VERSION}


# ---------------------------------------------------------------------------
# Clients / suppliers
# ---------------------------------------------------------------------------

@app.get("/clients")
async def list_clients(store: LedgerStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return _wire(store.get_all("clients"))


@app.post("/clients", status_code=status.HTTP_201_CREATED)
async def create_client(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return store.add("clients", await _read_json(request)).to_wire()


@app.put("/clients/{record_id}")
async def edit_client(record_id: str, request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return store.update("clients", record_id, await _read_json(request)).to_wire()


@app.delete("/clients/{record_id}")
async def remove_client(record_id: str, store: LedgerStore = Depends(get_store)) -> Dict[str, bool]:
    return {"deleted": store.delete("clients", record_id)}


@app.get("/suppliers")
async def list_suppliers(store: LedgerStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return _wire(store.get_all("suppliers"))


@app.post("/suppliers", status_code=status.HTTP_201_CREATED)
async def create_supplier(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return store.add("suppliers", await _read_json(request)).to_wire()


@app.put("/suppliers/{record_id}")
async def edit_supplier(record_id: str, request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return store.update("suppliers", record_id, await _read_json(request)).to_wire()


@app.delete("/suppliers/{record_id}")
async def remove_supplier(record_id: str, store: LedgerStore = Depends(get_store)) -> Dict[str, bool]:
    return {"deleted": store.delete("suppliers", record_id)}


# ---------------------------------------------------------------------------
# Sales / purchases
# ---------------------------------------------------------------------------

@app.get("/sales")
async def list_sales(store: LedgerStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return _wire(store.get_all("salesRecords"))


@app.post("/sales", status_code=status.HTTP_201_CREATED)
async def create_sale(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    record = add_sale(store, await _read_json(request))
    logger.info("Sale registered: %s #%s", record.document_type, record.correlative)
    return record.to_wire()


@app.put("/sales/{record_id}")
async def edit_sale(record_id: str, request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return update_sale(store, record_id, await _read_json(request)).to_wire()


@app.delete("/sales/{record_id}")
async def remove_sale(record_id: str, store: LedgerStore = Depends(get_store)) -> Dict[str, bool]:
    return {"deleted": delete_sale(store, record_id)}


@app.get("/purchases")
async def list_purchases(store: LedgerStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return _wire(store.get_all("purchaseRecords"))


@app.post("/purchases", status_code=status.HTTP_201_CREATED)
async def create_purchase(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    record = add_purchase(store, await _read_json(request))
    logger.info("Purchase registered: internal #%s", record.correlative)
    return record.to_wire()


@app.put("/purchases/{record_id}")
async def edit_purchase(record_id: str, request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return update_purchase(store, record_id, await _read_json(request)).to_wire()


@app.delete("/purchases/{record_id}")
async def remove_purchase(record_id: str, store: LedgerStore = Depends(get_store)) -> Dict[str, bool]:
    return {"deleted": delete_purchase(store, record_id)}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@app.get("/correlatives")
async def correlatives(store: LedgerStore = Depends(get_store)) -> Dict[str, int]:
    return get_next_correlatives(store)


@app.put("/correlatives")
async def override_correlatives(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, int]:
    payload = await _read_json(request)
    return set_sales_correlatives(store, payload.get("salesCCF"), payload.get("salesCF"))


@app.get("/company")
async def company(store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return store.get_company_info().to_wire()


@app.put("/company")
async def edit_company(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return store.set_company_info(await _read_json(request)).to_wire()


@app.post("/reset")
async def reset(store: LedgerStore = Depends(get_store)) -> Dict[str, str]:
    store.reset()
    logger.warning("All ledger data was deleted")
    return {"status": "reset"}


# ---------------------------------------------------------------------------
# Import / export
# ---------------------------------------------------------------------------

@app.get("/export/backup", response_class=PlainTextResponse)
async def download_backup(store: LedgerStore = Depends(get_store)) -> str:
    return export_backup(store)


@app.get("/export/json", response_class=PlainTextResponse)
async def download_json(store: LedgerStore = Depends(get_store)) -> str:
    return export_json(store)


@app.get("/export/template", response_class=PlainTextResponse)
async def download_template(examples: bool = True) -> str:
    return export_template(include_examples=examples)


@app.post("/import/bulk")
async def upload_bulk(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    counts = import_bulk_text(store, await _read_text(request))
    return {"status": "ok", "imported": counts}


@app.post("/import/backup")
async def upload_backup(request: Request, store: LedgerStore = Depends(get_store)) -> Dict[str, str]:
    import_backup_text(store, await _read_text(request))
    return {"status": "restored"}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@app.get("/reports/summary")
async def summary(year: int, month: int, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return period_summary(store, year, month).to_wire()


@app.get("/reports/sales-book")
async def sales_book_report(year: int, month: int, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return sales_book(store, year, month).to_wire()


@app.get("/reports/purchase-book")
async def purchase_book_report(year: int, month: int, store: LedgerStore = Depends(get_store)) -> Dict[str, Any]:
    return purchase_book(store, year, month).to_wire()
