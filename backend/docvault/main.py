import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docvault.config import Settings, settings
from docvault.database import get_session_factory, init_db
from docvault.dependencies import Services
from docvault.errors import DocVaultError, RateLimited
from docvault.routers import auth, categories, documents, quota
from docvault.services.audit import AuditSink
from docvault.services.content_validator import ContentValidator
from docvault.services.malware_scan import HttpMalwareScanner, MalwareScanner
from docvault.services.member_service import MemberService
from docvault.services.metadata_repository import MetadataRepository
from docvault.services.object_store import ObjectStore, build_s3_client
from docvault.services.orchestrator import UploadOrchestrator
from docvault.services.quota import QuotaTracker
from docvault.services.rate_limiter import UploadRateLimiter

logger = logging.getLogger("docvault")


def build_services(config: Settings, s3_client=None, scanner: MalwareScanner | None = None) -> Services:
    """Wire every component from one settings object."""
    session_factory = get_session_factory(config.db_path)
    repository = MetadataRepository(session_factory)
    audit = AuditSink(session_factory)

    if scanner is None and config.malware_scan_enabled:
        if not config.malware_scan_url:
            raise ValueError("DOCVAULT_MALWARE_SCAN_URL is required when malware scanning is enabled")
        scanner = HttpMalwareScanner(config.malware_scan_url, timeout=config.malware_scan_timeout_seconds)

    store = ObjectStore(
        s3_client or build_s3_client(config),
        config.s3_bucket,
        key_prefix=config.s3_key_prefix,
        presign_ttl_seconds=config.presign_ttl_seconds,
    )
    orchestrator = UploadOrchestrator(
        validator=ContentValidator(scanner=scanner, scan_fail_open=config.malware_scan_fail_open),
        store=store,
        repository=repository,
        quota=QuotaTracker(repository, config.per_user_quota_bytes, config.max_upload_bytes),
        audit=audit,
    )
    members = MemberService(session_factory, token_ttl_seconds=config.token_ttl_seconds)
    if config.bootstrap_admin_email:
        if not config.bootstrap_admin_password:
            raise ValueError("DOCVAULT_BOOTSTRAP_ADMIN_PASSWORD is required with DOCVAULT_BOOTSTRAP_ADMIN_EMAIL")
        members.ensure_admin(config.bootstrap_admin_email, config.bootstrap_admin_password)
        logger.info("Bootstrap admin %s is ready", config.bootstrap_admin_email)

    return Services(
        settings=config,
        session_factory=session_factory,
        members=members,
        repository=repository,
        orchestrator=orchestrator,
        audit=audit,
        upload_limiter=UploadRateLimiter(config.upload_rate_limit, config.upload_rate_window_seconds),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.log_level.upper())
    init_db(settings.db_path)
    app.state.services = build_services(settings)
    logger.info("DocVault ready (bucket=%s, db=%s)", settings.s3_bucket, settings.db_path)
    yield
    scanner = app.state.services.orchestrator.validator.scanner
    if isinstance(scanner, HttpMalwareScanner):
        scanner.close()


app = FastAPI(
    title="DocVault",
    description="Community document repository with validated uploads and S3 storage",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocVaultError)
async def docvault_error_handler(request: Request, exc: DocVaultError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimited) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()}, headers=headers)


app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(documents.router, prefix=settings.api_prefix)
app.include_router(quota.router, prefix=settings.api_prefix)
app.include_router(categories.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
