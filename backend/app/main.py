import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from api.analytics import router as analytics_router
from api.chat import router as chat_router
from api.chatbots import router as chatbots_router
from api.knowledge import router as knowledge_router
from services.contentstack import ContentstackAuthError, ContentstackError, EntryNotFoundError
from services.credential_vault import load_key

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("botdesk.main")

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Botdesk backend starting... DEBUG=%s", settings.DEBUG)

    if not settings.CONTENTSTACK_API_KEY or not settings.CONTENTSTACK_MANAGEMENT_TOKEN:
        logger.warning("Content stack credentials are not configured, every request will fail")
    try:
        load_key()
    except ValueError as e:
        logger.warning("Credential vault unavailable: %s", e)

    yield

    logger.info("Botdesk backend shutting down")


app = FastAPI(
    title="Botdesk API",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EntryNotFoundError)
async def entry_not_found_handler(request: Request, exc: EntryNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Entry not found"})


@app.exception_handler(ContentstackAuthError)
async def stack_auth_handler(request: Request, exc: ContentstackAuthError):
    logger.error("Content stack rejected credentials on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Content store rejected the configured credentials"})


@app.exception_handler(ContentstackError)
async def stack_error_handler(request: Request, exc: ContentstackError):
    logger.error("Content stack error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Content store request failed", "code": exc.code})


app.include_router(chatbots_router)
app.include_router(knowledge_router)
app.include_router(chat_router)
app.include_router(analytics_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
