import sys, os, uvicorn, logging
from contextlib import asynccontextmanager
from typing import Optional, Protocol, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from config.settings import settings
from services.analytics_store import AnalyticsStore
from services.catalog_service import CatalogService
from services.llm_client import get_llm_client
from api.routers import catalog, system

LOG_DIR = settings.log_dir
os.makedirs(LOG_DIR, exist_ok=True)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                    handlers=[logging.StreamHandler(), logging.FileHandler(os.path.join(LOG_DIR, "spend_catalog.log"))])
logger = logging.getLogger(__name__)


class SpendCatalogAppState(Protocol):
    store: Optional[AnalyticsStore]
    catalog_service: Optional[CatalogService]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("API starting up...")
    state = cast(SpendCatalogAppState, app.state)
    try:
        store = AnalyticsStore(settings.duckdb_path)
        state.store = store
        state.catalog_service = CatalogService(store, get_llm_client())
        logger.info("System initialized successfully.")
    except Exception as e:
        logger.critical(f"FATAL: System initialization failed: {e}", exc_info=True)
        state.store = None
        state.catalog_service = None
    yield
    if hasattr(state, "catalog_service"):
        state.catalog_service = None
    store = getattr(state, "store", None)
    if store is not None:
        try:
            store.close()
        except Exception:
            logger.exception("Failed to close the analytics store during shutdown")
        state.store = None
    logger.info("API shutting down.")

app = FastAPI(title="Spend Catalogue API", version="1.0", lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

app.include_router(system.router)
app.include_router(catalog.router)

@app.get("/", tags=["General"])
def read_root(): return {"message": "Welcome to the Spend Catalogue API"}

if __name__ == "__main__":
    uvicorn.run("api.main:app", host="0.0.0.0", port=settings.api_port, reload=True)
