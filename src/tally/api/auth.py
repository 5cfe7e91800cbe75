"""JWT bearer authentication for the tally API.

Passwords are stored as bcrypt hashes. Tokens are HS256 JWTs whose ``sub``
claim is the user id; every ledger and chat route resolves it through
:func:`get_current_user` and scopes its queries to that user.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from tally.ledger.models import User
from tally.ledger.repository import LedgerRepository

router = APIRouter(prefix="/api/auth", tags=["auth"])

_ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode(), password_hash.encode())


def create_token(user_id: str, secret: str, expiry_hours: int = 24) -> str:
    issued = datetime.now(UTC)
    claims = {
        "sub": user_id,
        "iat": issued,
        "exp": issued + timedelta(hours=expiry_hours),
    }
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def decode_token(token: str, secret: str) -> dict[str, Any]:
    """Verify signature and expiry; failures become 401 responses."""
    try:
        return jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except jwt.ExpiredSignatureError as err:
        raise _unauthorized("Token expired") from err
    except jwt.InvalidTokenError as err:
        raise _unauthorized("Invalid token") from err


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=8)
    display_name: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    display_name: str
    is_active: bool


def _jwt_secret(request: Request) -> str:
    secret: str = request.app.state.config.auth.jwt_secret
    if not secret:
        raise HTTPException(status_code=500, detail="JWT secret not configured")
    return secret


def _issue(request: Request, user_id: str) -> TokenResponse:
    auth = request.app.state.config.auth
    token = create_token(user_id, _jwt_secret(request), auth.token_expiry_hours)
    return TokenResponse(access_token=token, user_id=user_id)


async def get_current_user(request: Request) -> User:
    """FastAPI dependency: the active user named by the Bearer token."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer" or not token:
        raise _unauthorized("Missing or invalid Authorization header")

    user_id = decode_token(token, _jwt_secret(request)).get("sub")
    if not user_id:
        raise _unauthorized("Invalid token")

    async with request.app.state.db_factory() as session:
        user = await LedgerRepository(session).get_user(user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User not found or inactive")
    return user


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(body: RegisterRequest, request: Request) -> TokenResponse:
    """Create an account seeded with the default categories."""
    if not request.app.state.config.auth.registration_enabled:
        raise HTTPException(status_code=403, detail="Registration is disabled")
    _jwt_secret(request)

    async with request.app.state.db_factory() as session, session.begin():
        repo = LedgerRepository(session)
        if await repo.get_user_by_email(body.email) is not None:
            raise HTTPException(status_code=409, detail="Email already registered")
        user = await repo.create_user(
            body.email, hash_password(body.password), body.display_name
        )
        user_id = user.id

    return _issue(request, user_id)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request) -> TokenResponse:
    async with request.app.state.db_factory() as session:
        user = await LedgerRepository(session).get_user_by_email(body.email)

    if user is None or not verify_password(body.password, user.password_hash):
        raise _unauthorized("Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled")
    return _issue(request, user.id)


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)) -> UserResponse:  # noqa: B008
    return UserResponse.model_validate(user)
