import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vilo.core.config import settings
from vilo.core.errors import register_error_handlers
from vilo.api.v1.api import api_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=settings.APP_NAME)

# CORS: use CORS_ORIGINS from env in production; default to the local frontend for dev
_default_origins = ["http://127.0.0.1:5173", "http://localhost:5173"]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
