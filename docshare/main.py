import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from docshare.config import Settings, configure_logging
from docshare.errors import DocShareError
from docshare.reconcile import AccessReconciler
from docshare.routes import auth, documents, sharing
from docshare.services import Services, select_services
from docshare.storage import MemoryRecordStore, PostgresRecordStore, RecordStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> RecordStore:
    if settings.database_url:
        return PostgresRecordStore(settings.database_url)
    logger.warning("DATABASE_URL not set; records are kept in memory only")
    return MemoryRecordStore()


def create_app(settings: Optional[Settings] = None, store: Optional[RecordStore] = None,
               services: Optional[Services] = None) -> FastAPI:
    """
    Wire settings, the record store and the blob/ledger services into a FastAPI app.
    Anything not passed in is built from the environment.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    store = store or build_store(settings)
    services = services or select_services(settings)

    app = FastAPI(title="DocShare API")
    app.state.settings = settings
    app.state.store = store
    app.state.services = services
    app.state.reconciler = AccessReconciler(store, services)

    app.include_router(auth.router)
    app.include_router(documents.router)
    app.include_router(sharing.router)

    @app.on_event("startup")
    async def _startup():
        await store.startup()

    @app.get("/health")
    def health():
        return {"ok": True, "mode": "development" if services.development_mode else "production",
                "services": services.status()}

    @app.exception_handler(DocShareError)
    async def _docshare_error(request: Request, exc: DocShareError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.detail)
        body = {"message": exc.message}
        if settings.expose_error_detail and exc.detail:
            body["error"] = exc.detail
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError):
        body = {"message": "Invalid request"}
        if settings.expose_error_detail:
            body["error"] = str(exc.errors())
        return JSONResponse(status_code=400, content=body)

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        body = {"message": "Server error"}
        if settings.expose_error_detail:
            body["error"] = str(exc)
        return JSONResponse(status_code=500, content=body)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("docshare.main:app", host="127.0.0.1", port=8000, reload=True)
