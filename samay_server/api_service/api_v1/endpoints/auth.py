from typing import Annotated, Optional

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from samay_server.api_service.core.database import get_db
from samay_server.api_service.core.errors import AuthenticationError
from samay_server.api_service.core.models import User
from samay_server.api_service import auth as auth_service
from samay_server.api_service.auth import get_current_active_user, oauth2_scheme
from samay_server.api_service import schemas

router = APIRouter()


@router.post(
    "/register",
    response_model=schemas.DataResponse[schemas.AuthResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register(user_in: schemas.RegisterRequest, db: AsyncSession = Depends(get_db)):
    result = await auth_service.register(db, user_in)
    return schemas.DataResponse(data=result, message="User registered successfully")


@router.post("/login", response_model=schemas.DataResponse[schemas.AuthResponse])
async def login(credentials: schemas.LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await auth_service.login(db, credentials.email, credentials.password)
    return schemas.DataResponse(data=result, message="Login successful")


@router.post("/token", response_model=schemas.Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    db: AsyncSession = Depends(get_db),
):
    """OAuth2 password flow for the interactive docs. The username is the email."""
    result = await auth_service.login(db, form_data.username, form_data.password)
    return schemas.Token(access_token=result.token)


@router.post("/logout", response_model=schemas.MessageResponse)
async def logout(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
):
    if not token:
        raise AuthenticationError("Not authenticated", "INVALID_TOKEN")
    await auth_service.logout(db, token)
    return schemas.MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=schemas.DataResponse[schemas.User])
async def read_current_user(
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db),
):
    """Get current user info"""
    profile = await auth_service.get_user_profile(db, current_user.id)
    return schemas.DataResponse(data=profile)
