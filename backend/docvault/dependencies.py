import logging
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import sessionmaker

from docvault.config import Settings
from docvault.errors import RateLimited
from docvault.services.audit import AuditSink
from docvault.services.member_service import Caller, MemberService
from docvault.services.metadata_repository import MetadataRepository
from docvault.services.orchestrator import UploadOrchestrator
from docvault.services.rate_limiter import UploadRateLimiter

logger = logging.getLogger("docvault.dependencies")


@dataclass
class Services:
    """Process-wide components, built once at startup and kept on ``app.state``."""

    settings: Settings
    session_factory: sessionmaker
    members: MemberService
    repository: MetadataRepository
    orchestrator: UploadOrchestrator
    audit: AuditSink
    upload_limiter: UploadRateLimiter


def get_services(request: Request) -> Services:
    return request.app.state.services


def _bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return authorization[7:]


async def require_token(authorization: str | None = Header(None)) -> str:
    return _bearer_token(authorization)


async def require_caller(
    token: str = Depends(require_token),
    services: Services = Depends(get_services),
) -> Caller:
    caller = services.members.validate_token(token)
    if caller is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return caller


async def require_admin(caller: Caller = Depends(require_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required")
    return caller


async def limit_uploads(
    caller: Caller = Depends(require_caller),
    services: Services = Depends(get_services),
) -> Caller:
    decision = services.upload_limiter.hit(caller.id)
    if not decision.allowed:
        logger.warning("Upload rate limit hit for %s (%d/%d)", caller.id, decision.count, decision.limit)
        exc = RateLimited(
            f"Too many uploads, limit is {decision.limit} per {services.upload_limiter.window_seconds}s",
            retry_after=decision.retry_after,
        )
        services.audit.upload_rejected(caller.id, exc.message)
        raise exc
    return caller
