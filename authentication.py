import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from pydantic import BaseModel
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from config import settings
from logging_config import get_logger
from schema import User
from store import StoreSnapshot

logger = get_logger("auth")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="session")

_process_key: Optional[str] = None


def signing_key() -> str:
    """SECRET_KEY, or a random key that only lives as long as this process."""
    global _process_key
    if settings.SECRET_KEY:
        return settings.SECRET_KEY
    if _process_key is None:
        logger.warning("SECRET_KEY is not set; sessions will not survive a restart")
        _process_key = secrets.token_urlsafe(32)
    return _process_key


class Session(BaseModel):
    """The acting user for one request, identified by id only."""
    user_id: str

    class Config:
        frozen = True

    def resolve(self, snapshot: StoreSnapshot) -> Optional[User]:
        """The session's user, or None if it has since been deleted."""
        return snapshot.user(self.user_id)


def generate_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.TOKEN_EXPIRE_MIN)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, signing_key(), algorithm=settings.ALGO)
    return encoded_jwt

def issue_session_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    return generate_access_token(data={"sub": user.id}, expires_delta=expires_delta)

def decode_session_token(token: str) -> Optional[Session]:
    try:
        payload = jwt.decode(token, signing_key(), algorithms=[settings.ALGO])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return Session(user_id=user_id)

async def verify_user_session(token: str = Depends(oauth2_scheme)) -> Session:
    session = decode_session_token(token)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session invalid or expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session
