# SpendCatalog/api/routers/catalog.py

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool

from services.catalog_errors import (
    CatalogBuildError,
    CatalogBuildInProgressError,
    CatalogValidationError,
)
from services.catalog_service import CatalogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["Category Catalogue"])


def get_catalog_service(request: Request) -> CatalogService:
    service = getattr(request.app.state, "catalog_service", None)
    if not service:
        raise HTTPException(status_code=503, detail="Catalogue service is not available.")
    return service


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, CatalogValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, CatalogBuildInProgressError):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, CatalogBuildError):
        raise HTTPException(status_code=422, detail=str(exc))
    logger.exception("Catalogue request failed")
    raise HTTPException(status_code=500, detail=f"Catalogue request failed: {exc}")


@router.post("/build", summary="Classify purchase-order lines and link payments")
async def build_catalog(service: CatalogService = Depends(get_catalog_service)) -> Dict[str, Any]:
    try:
        return await run_in_threadpool(service.build)
    except Exception as exc:
        _raise_http(exc)


@router.get("/summary", summary="Taxonomy, suppliers and per-subcategory line counts")
def catalog_summary(service: CatalogService = Depends(get_catalog_service)) -> Dict[str, Any]:
    try:
        return service.summary()
    except Exception as exc:
        _raise_http(exc)


@router.get("/profile", summary="Payment delay profile for one subcategory/supplier pair")
def catalog_profile(
    subcategory: Optional[str] = Query(default=None),
    supplier: Optional[str] = Query(default=None),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    try:
        return service.profile(subcategory, supplier)
    except Exception as exc:
        _raise_http(exc)


@router.get("/export", summary="Export the taxonomy and line classifications")
def export_catalog(service: CatalogService = Depends(get_catalog_service)) -> Dict[str, Any]:
    try:
        return service.export()
    except Exception as exc:
        _raise_http(exc)


@router.post("/import", summary="Restore a previously exported catalogue")
async def import_catalog(
    payload: Any = Body(...),
    service: CatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    try:
        return await run_in_threadpool(service.import_catalog, payload)
    except Exception as exc:
        _raise_http(exc)


__all__: List[str] = ["router", "get_catalog_service"]
