# exam_engine/api/v1/endpoints/auth.py
from datetime import timedelta

from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from exam_engine.core.config import settings
from exam_engine.core.errors import Unauthorized, ValidationError
from exam_engine.core.security import (
    authenticate_user,
    create_access_token,
    get_password_hash,
    get_user_by_email,
)
from exam_engine.db.session import get_db
from exam_engine.models.user import User, UserRole
from exam_engine.schemas.auth import (
    Token,
    LoginRequest,
    RegisterRequest,
    UserPublic,
)

router = APIRouter()


def _issue_token(user: User) -> Token:
    access_token = create_access_token(
        data={"sub": user.email, "role": user.role},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return Token(access_token=access_token)


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(payload: RegisterRequest, db: AsyncSession = Depends(get_db)):
    # public sign-up only ever creates students
    if await get_user_by_email(db, payload.email):
        raise ValidationError("Email already registered")

    user = User(
        email=payload.email,
        password_hash=get_password_hash(payload.password),
        name=payload.name,
        role=UserRole.STUDENT,
        roll_number=payload.roll_number,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    return user


@router.post("/login", response_model=Token)
async def login_for_access_token(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate_user(db, payload.email, payload.password)
    if not user:
        raise Unauthorized("Incorrect email or password")
    return _issue_token(user)


# OAuth2 form login, used by the docs "Authorize" button; username is the email
@router.post("/token", response_model=Token)
async def login_for_access_token_form(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise Unauthorized("Incorrect email or password")
    return _issue_token(user)
