from fastapi import APIRouter, Depends, HTTPException, Request

from docvault.dependencies import Services, get_services, require_caller, require_token
from docvault.schemas.member import (
    CallerResponse,
    LoginRequest,
    MemberResponse,
    RegisterRequest,
    ThrottleResponse,
    TokenResponse,
)
from docvault.services.member_service import Caller, MemberExists

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=MemberResponse, status_code=201)
async def register(req: RegisterRequest, services: Services = Depends(get_services)):
    try:
        member = services.members.register(req.email, req.password)
    except MemberExists:
        raise HTTPException(status_code=409, detail="Email is already registered")
    return MemberResponse(id=member.id, email=member.email, role=member.role, created_at=member.created_at)


@router.post("/login", response_model=TokenResponse | ThrottleResponse)
async def login(req: LoginRequest, request: Request, services: Services = Depends(get_services)):
    client_host = request.client.host if request.client else "unknown"
    # Throttled per account and client host.
    throttle_key = f"login:{req.email.strip().lower()}:{client_host}"
    result = services.members.login(req.email, req.password, throttle_key=throttle_key)
    if result is None:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if "error" in result:
        raise HTTPException(status_code=429, detail=result)
    return TokenResponse(**result)


@router.post("/logout")
async def logout(token: str = Depends(require_token), services: Services = Depends(get_services)):
    services.members.logout(token)
    return {"status": "logged_out"}


@router.get("/me", response_model=CallerResponse)
async def me(caller: Caller = Depends(require_caller)):
    return CallerResponse(id=caller.id, role=caller.role)
