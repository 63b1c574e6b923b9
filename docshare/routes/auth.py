# docshare/routes/auth.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from docshare.auth import (
    get_current_user,
    get_services,
    get_settings,
    get_store,
    hash_password,
    issue_token,
    verify_password,
)
from docshare.config import Settings
from docshare.errors import AuthenticationError, ValidationError
from docshare.models import User, utcnow
from docshare.policies import validate_password
from docshare.services import Services
from docshare.storage import RecordStore

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterBody(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginBody(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileBody(BaseModel):
    name: Optional[str] = None


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterBody, settings: Settings = Depends(get_settings),
                   store: RecordStore = Depends(get_store)):
    if not body.name or not body.email or not body.password:
        raise ValidationError("Name, email, and password are required")
    validate_password(body.password)

    user = User(
        name=body.name.strip(),
        email=body.email.strip().lower(),
        password_hash=hash_password(body.password),
    )
    user = await store.create_user(user)
    return {
        "message": "User registered successfully",
        "token": issue_token(user.id, settings),
        "user": user.public(),
    }


@router.post("/login")
async def login(body: LoginBody, settings: Settings = Depends(get_settings),
                store: RecordStore = Depends(get_store)):
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")

    user = await store.find_user_by_email(body.email)
    if user is None or not verify_password(user.password_hash, body.password):
        raise AuthenticationError("Invalid credentials")

    user.last_login_at = utcnow()
    await store.update_user(user)
    return {
        "message": "Login successful",
        "token": issue_token(user.id, settings),
        "user": user.public(),
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return {"user": user.public()}


@router.put("/me")
async def update_profile(body: ProfileBody, user: User = Depends(get_current_user),
                         store: RecordStore = Depends(get_store)):
    if not body.name or not body.name.strip():
        raise ValidationError("Name is required")
    user.name = body.name.strip()
    user = await store.update_user(user)
    return {"message": "Profile updated successfully", "user": user.public()}


@router.get("/users/search")
async def search_users(email: str = Query(""), user: User = Depends(get_current_user),
                       store: RecordStore = Depends(get_store)):
    if len(email) < 3:
        raise ValidationError("Email query must be at least 3 characters")
    users = await store.search_users(email, exclude_id=user.id, limit=10)
    return {"users": [u.brief() for u in users]}


@router.get("/wallet")
async def wallet(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    balance = await services.ledger.get_wallet_balance(user.id)
    return {
        "address": balance.address,
        "balance": str(balance.balance),
        "balanceFormatted": balance.balance_formatted,
    }


@router.post("/refresh")
async def refresh(user: User = Depends(get_current_user), settings: Settings = Depends(get_settings)):
    return {"message": "Token refreshed successfully", "token": issue_token(user.id, settings)}


@router.post("/logout")
async def logout(user: User = Depends(get_current_user)):
    # tokens are stateless; the client drops its copy
    return {"message": "Logged out successfully"}
