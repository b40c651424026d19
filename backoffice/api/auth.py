"""
Authentication: password hashing, bearer tokens and role guards
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from backoffice.config import get_settings
from backoffice.database import get_db
from backoffice.models.user import AccountStatus, Profile, User

settings = get_settings()
router = APIRouter()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

BLOCKED_STATUSES = {AccountStatus.DEACTIVE.value, AccountStatus.PENDING.value}


class Token(BaseModel):
    access_token: str
    token_type: str


class MeResponse(BaseModel):
    id: str
    email: Optional[str]
    full_name: Optional[str]
    role: str
    account_status: str
    trial_expiry: Optional[datetime]
    commission_rate: Optional[float]


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def load_profile(db: AsyncSession, user_id: str) -> Optional[Profile]:
    result = await db.execute(
        select(Profile)
        .options(selectinload(Profile.user))
        .where(Profile.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> Profile:
    """Resolve the bearer token to the caller's profile"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    profile = await load_profile(db, user_id)
    if profile is None:
        raise credentials_exception
    if profile.account_status in BLOCKED_STATUSES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is not active")
    return profile


def require_roles(*roles):
    """Dependency factory: 403 unless the caller has one of the roles"""
    async def checker(current_user: Profile = Depends(get_current_user)) -> Profile:
        if not current_user.has_role(*roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return current_user
    return checker


@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db)
):
    """Login with email + password, returns a bearer token"""
    result = await db.execute(select(User).where(User.email == form_data.username.strip().lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    profile = await load_profile(db, user.id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Profile not found")
    if profile.account_status in BLOCKED_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Account is {profile.account_status}",
        )

    access_token = create_access_token(data={"sub": user.id, "role": profile.role})
    return {"access_token": access_token, "token_type": "bearer"}


@router.get("/me", response_model=MeResponse)
async def get_me(current_user: Profile = Depends(get_current_user)):
    return MeResponse(
        id=current_user.user_id,
        email=current_user.email,
        full_name=current_user.full_name,
        role=current_user.role,
        account_status=current_user.account_status,
        trial_expiry=current_user.trial_expiry,
        commission_rate=float(current_user.commission_rate) if current_user.commission_rate is not None else None,
    )
