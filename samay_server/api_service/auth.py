from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import uuid

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, select

from samay_server.api_service.core.database import get_db
from samay_server.api_service.core.errors import (
    AuthenticationError, AuthorizationError, ConflictError, NotFoundError
)
from samay_server.api_service.core.models import User, UserRole, UserSession
from samay_server.api_service.core.settings import settings
from samay_server.api_service import schemas

logger = logging.getLogger(__name__)

# Security
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/token", auto_error=False)

INVALID_CREDENTIALS = "Invalid email or password"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS))
    # jti keeps tokens unique when two are issued within the same second
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def user_to_schema(user: User) -> schemas.User:
    return schemas.User(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role.value,
        created_at=user.created_at,
    )


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    """Get a user by email"""
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()


async def create_session(db: AsyncSession, user: User) -> str:
    """Issue a token for the user and record it as a live session."""
    expires_delta = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    token = create_access_token({"sub": str(user.id), "role": user.role.value}, expires_delta)
    db.add(UserSession(user_id=user.id, token=token, expires_at=datetime.now(timezone.utc) + expires_delta))
    await db.flush()
    return token


async def register(db: AsyncSession, user_in: schemas.RegisterRequest) -> schemas.AuthResponse:
    if await get_user_by_email(db, user_in.email):
        raise ConflictError("User with this email already exists", "USER_EXISTS")

    user = User(
        email=user_in.email.lower(),
        name=user_in.name,
        hashed_password=get_password_hash(user_in.password),
        role=UserRole.USER,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    token = await create_session(db, user)
    logger.info(f"Registered user {user.id}")
    return schemas.AuthResponse(user=user_to_schema(user), token=token)


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    """Authenticate a user"""
    user = await get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


async def login(db: AsyncSession, email: str, password: str) -> schemas.AuthResponse:
    user = await authenticate_user(db, email, password)
    if not user:
        raise AuthenticationError(INVALID_CREDENTIALS, "INVALID_CREDENTIALS")
    token = await create_session(db, user)
    return schemas.AuthResponse(user=user_to_schema(user), token=token)


async def logout(db: AsyncSession, token: str) -> None:
    result = await db.execute(delete(UserSession).where(UserSession.token == token))
    if result.rowcount == 0:
        raise AuthenticationError("Invalid or expired token", "INVALID_TOKEN")


async def validate_token(db: AsyncSession, token: str) -> Optional[User]:
    """Returns the session's user when the JWT verifies and its session is still live."""
    try:
        jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    result = await db.execute(
        select(User)
        .join(UserSession, UserSession.user_id == User.id)
        .where(UserSession.token == token, UserSession.expires_at > datetime.now(timezone.utc))
    )
    return result.scalar_one_or_none()


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get the current authenticated user"""
    if not token:
        raise AuthenticationError("Not authenticated", "INVALID_TOKEN")
    user = await validate_token(db, token)
    if user is None:
        raise AuthenticationError("Could not validate credentials", "INVALID_TOKEN")
    return user


async def get_current_active_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """Get the current active user (for future use if we add user deactivation)"""
    return current_user


async def require_admin(current_user: User = Depends(get_current_active_user)) -> User:
    if current_user.role != UserRole.ADMIN:
        raise AuthorizationError()
    return current_user


async def get_user_profile(db: AsyncSession, user_id: uuid.UUID) -> schemas.User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found", "USER_NOT_FOUND")
    return user_to_schema(user)
