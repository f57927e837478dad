import logging
import os
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import AsyncMongoClient
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from mailsync.api.router import router as api_router
from mailsync.api.sync.service import MailboxSyncService
from mailsync.config import settings
from mailsync.database import ensure_indexes

if settings.ENVIRONMENT == "development":
    router_prefix = ""
else:
    router_prefix = "/api/v1"

# Configure logging
date_str = datetime.now().strftime("%Y-%m-%d")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s]: %(message)s",
)

os.makedirs("logs", exist_ok=True)
file_handler = logging.FileHandler(f"logs/app-err-{date_str}.log")
file_handler.setLevel(logging.ERROR)
logger = logging.getLogger('fastapi-errors')
logger.setLevel(logging.ERROR)
logger.addHandler(file_handler)

app = FastAPI(
    title="Mailbox Sync API",
    description="Mirrors linked Gmail mailboxes into the local conversation store",
    version="0.1.0",
)

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

app.include_router(api_router, prefix=router_prefix)

origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]

if settings.FRONTEND_URL:
    frontend_urls = settings.FRONTEND_URL.split(",")
    origins.extend([url.strip() for url in frontend_urls if url.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(
        f"[{datetime.now()}] Unhandled error at {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal Server Error. Reason: {exc}"},
    )


@app.get("/")
async def root():
    return {"message": "Mailbox Sync API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


scheduler = AsyncIOScheduler(
    job_defaults={"max_instances": 1, "coalesce": True, "misfire_grace_time": 30}
)


async def run_mail_sync_job():
    """Periodic job to mirror every linked mailbox."""
    client = AsyncMongoClient(settings.DB_CONNECTION_STRING)
    try:
        service = MailboxSyncService(client[settings.DB_NAME])
        await service.sync_all_users()
    finally:
        await client.close()


@app.on_event("startup")
async def on_startup():
    client = AsyncMongoClient(settings.DB_CONNECTION_STRING)
    try:
        await ensure_indexes(client[settings.DB_NAME])
    finally:
        await client.close()

    if settings.MAIL_SYNC_SCHEDULER_ENABLED:
        scheduler.add_job(
            run_mail_sync_job,
            "interval",
            minutes=settings.MAIL_SYNC_INTERVAL_MINUTES,
            next_run_time=datetime.now(),
            id="mail_sync_job",
            replace_existing=True,
        )
        scheduler.start()
        logging.info(
            f"Scheduler configured: mail_sync_job every {settings.MAIL_SYNC_INTERVAL_MINUTES} minutes "
            f"(budget={settings.MAIL_SYNC_TIME_BUDGET_SECONDS}s, window={settings.MAIL_SYNC_FULL_WINDOW_DAYS} days)"
        )


@app.on_event("shutdown")
async def on_shutdown():
    if scheduler.running:
        scheduler.shutdown(wait=False)
