import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from examsync.core.config import settings
from examsync.api.auth import router as auth_router
from examsync.api.external import router as external_router
from examsync.api.attempts import router as attempts_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.include_router(auth_router, prefix="/v1/auth", tags=["auth"])
app.include_router(external_router, prefix="/v1/external", tags=["external-sync"])
app.include_router(attempts_router, prefix="/v1/attempts", tags=["attempts"])

@app.get("/health")
def health(): return {"status": "ok"}
