# nightaudit/auth.py

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from nightaudit import models, schemas
from nightaudit.audit import MODULE
from nightaudit.daily_close import DailyCloseService, ServiceRegistry, get_registry
from nightaudit.database import SessionLocal
from nightaudit.permissions import SUPERUSER_ROLES

# ------------------------------------------------------------------
# ENV & CONFIG
# ------------------------------------------------------------------

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(
    os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 1440)
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Tokens are issued by the club's login service.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login")

# ------------------------------------------------------------------
# PASSWORD UTILS
# ------------------------------------------------------------------

def get_password_hash(password: str) -> str:
    if len(password) > 72:
        password = password[:72]
    return pwd_context.hash(password)

# ------------------------------------------------------------------
# JWT UTILS
# ------------------------------------------------------------------

def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    data should include at least {"sub": user.email}.
    """
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

# ------------------------------------------------------------------
# DATABASE DEPENDENCY
# ------------------------------------------------------------------

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# ------------------------------------------------------------------
# AUTH DEPENDENCIES
# ------------------------------------------------------------------

def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> models.User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        email: Optional[str] = payload.get("sub")

        if email is None:
            raise credentials_exception

    except JWTError:
        raise credentials_exception

    user = (
        db.query(models.User)
        .filter(models.User.email == email)
        .first()
    )

    if not user:
        raise credentials_exception

    return user


def operator_from_user(user: models.User) -> schemas.Operator:
    return schemas.Operator(id=str(user.id), name=(user.name or user.email or "").strip())


@dataclass
class ClubAccess:
    user: models.User
    club_id: str
    service: DailyCloseService


def require_permission(action: str):
    """
    Dependency factory: the current user must hold `daily_close.<action>`
    in the club being addressed. Resolves to that club's service.
    """

    def dependency(
        club_id: Optional[str] = Query(None, description="Club id, defaults to the configured club"),
        current_user: models.User = Depends(get_current_user),
        registry: ServiceRegistry = Depends(get_registry),
    ) -> ClubAccess:
        role = str(getattr(current_user.role, "value", current_user.role) or "")
        requested = str(club_id or "").strip() or registry.config.club_id

        # Staff accounts are bound to their own club; only system admins cross clubs.
        if current_user.club_id and current_user.club_id != requested and role != "system_admin":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access to this club is not allowed")

        target_club = registry.club(requested)
        if role not in SUPERUSER_ROLES:
            cache = registry.permissions(target_club)
            if not cache.has_permission(role, MODULE, action):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission required: {MODULE}.{action}",
                )
        return ClubAccess(user=current_user, club_id=target_club, service=registry.service(target_club))

    return dependency
