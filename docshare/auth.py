# docshare/auth.py
from datetime import timedelta
from typing import Optional

import jwt
import nacl.pwhash
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from nacl.exceptions import InvalidkeyError

from docshare.config import Settings
from docshare.errors import AuthenticationError
from docshare.models import User, utcnow
from docshare.reconcile import AccessReconciler
from docshare.services import Services
from docshare.storage import RecordStore

JWT_ALGORITHM = "HS256"

bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return nacl.pwhash.str(password.encode("utf-8")).decode("ascii")


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return nacl.pwhash.verify(password_hash.encode("ascii"), password.encode("utf-8"))
    except InvalidkeyError:
        return False


def issue_token(user_id: str, settings: Settings) -> str:
    now = utcnow()
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> str:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        raise AuthenticationError("Token is not valid", detail=str(e)) from e
    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Token is not valid")
    return subject


# -- request dependencies ------------------------------------------------------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_reconciler(request: Request) -> AccessReconciler:
    return request.app.state.reconciler


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    settings: Settings = Depends(get_settings),
    store: RecordStore = Depends(get_store),
) -> User:
    if credentials is None:
        raise AuthenticationError("No token, authorization denied")
    user_id = decode_token(credentials.credentials, settings)
    user = await store.get_user(user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Token is not valid")
    return user
