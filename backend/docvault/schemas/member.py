from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=256)


class LoginRequest(BaseModel):
    email: str
    password: str


class MemberResponse(BaseModel):
    id: str
    email: str
    role: str
    created_at: str


class TokenResponse(BaseModel):
    token: str
    expires_in_seconds: int


class ThrottleResponse(BaseModel):
    error: str
    retry_after_seconds: float


class CallerResponse(BaseModel):
    id: str
    role: str
