import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.hash import bcrypt
from sqlalchemy.orm import Session

from . import crud, schemas
from .config import Settings

ALGORITHM = "HS256"

logger = logging.getLogger(__name__)

# auto_error=False: a missing token yields an anonymous session and the
# permission checks decide between 401 and 403
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="login", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def verify_password(plain_password, hashed_password):
    return bcrypt.verify(plain_password, hashed_password)

def authenticate_user(db: Session, email: str, password: str):
    user = crud.get_user_by_email(db, email)
    if not user or not user.hashed_password:
        return False
    if not verify_password(password, user.hashed_password):
        return False
    return user

def create_access_token(sub: str, settings: Settings, expires_delta: timedelta = None):
    to_encode = {"sub": sub}
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)
    return encoded_jwt

def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[schemas.SessionUser]:
    """The session collaborator: the calling user, or None when anonymous."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        logger.info("Rejected bearer token")
        return None
    email = payload.get("sub")
    if email is None:
        return None
    user = crud.get_user_by_email(db, email)
    if user is None:
        return None
    return schemas.SessionUser.model_validate(user)
