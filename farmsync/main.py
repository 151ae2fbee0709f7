# farmsync/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from farmsync.api.v1.sync import router as sync_router
from farmsync.core.config import settings
from farmsync.core.exceptions import SyncError

logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG
)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    """Erreurs de synchronisation : {kind, message, details}"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
def root():
    return {"message": f"Backend {settings.APP_NAME} actif"}


@app.get("/health")
def health_check():
    """Endpoint de santé pour les load balancers"""
    return {"status": "healthy"}


# Inclure les routes
app.include_router(sync_router, prefix="/api")
