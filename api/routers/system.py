# SpendCatalog/api/routers/system.py

import logging
import os
from io import BytesIO
from typing import Any, Dict, List

import pandas as pd
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile

from services.analytics_store import AnalyticsStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System & Data"])

SUPPORTED_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


def get_store(request: Request) -> AnalyticsStore:
    store = getattr(request.app.state, "store", None)
    if not store:
        raise HTTPException(status_code=503, detail="Analytics store is not available.")
    return store


@router.get("/health", summary="Liveness probe")
def health() -> Dict[str, bool]:
    return {"ok": True}


@router.get("/schema", summary="Loaded tables with their columns")
def get_schema(store: AnalyticsStore = Depends(get_store)) -> Dict[str, List[Dict[str, str]]]:
    return {
        table: [column.as_dict() for column in columns]
        for table, columns in store.get_schema().items()
    }


@router.post("/upload", summary="Load the first sheet of a spreadsheet as a table")
async def upload_spreadsheet(
    file: UploadFile = File(...),
    store: AnalyticsStore = Depends(get_store),
) -> Dict[str, Any]:
    filename = file.filename or "upload.xlsx"
    stem, suffix = os.path.splitext(filename)
    if suffix.lower() not in SUPPORTED_SUFFIXES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{suffix or filename}'. Expected one of: {', '.join(sorted(SUPPORTED_SUFFIXES))}.",
        )
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    try:
        frame = pd.read_excel(BytesIO(data), sheet_name=0)
    except Exception as exc:
        logger.exception("Failed to read spreadsheet %s", filename)
        raise HTTPException(status_code=400, detail=f"Could not read spreadsheet: {exc}")

    try:
        result = store.ingest_frame(frame, stem)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Uploaded %s as table %s (%d rows)", filename, result["table"], result["rows"])
    return result
