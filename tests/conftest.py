"""Shared pytest fixtures: in-process stores, simulated ledger, ASGI client."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from docshare.auth import hash_password
from docshare.config import Settings
from docshare.ipfs import LocalBlobStore
from docshare.ledger import SimulatedLedger
from docshare.main import create_app
from docshare.models import User
from docshare.reconcile import AccessReconciler
from docshare.services import Services
from docshare.storage import MemoryRecordStore
from docshare.wallets import SecretWalletDeriver, WalletCache

PASSWORD = "correct-horse"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        dev_storage_dir=tmp_path / "blobs",
        jwt_secret="test-jwt-secret-that-is-long-enough-for-hs256",
        app_env="development",
    )


@pytest.fixture
def wallets(settings: Settings) -> WalletCache:
    return WalletCache(SecretWalletDeriver(settings.derivation_secret))


@pytest.fixture
def blob_store(settings: Settings) -> LocalBlobStore:
    return LocalBlobStore(settings.dev_storage_dir)


@pytest.fixture
def ledger(wallets: WalletCache) -> SimulatedLedger:
    return SimulatedLedger(wallets)


@pytest.fixture
def services(blob_store, ledger, wallets) -> Services:
    return Services(blob_store=blob_store, ledger=ledger, wallets=wallets, development_mode=True)


@pytest.fixture
def prod_services(blob_store, ledger, wallets) -> Services:
    return Services(blob_store=blob_store, ledger=ledger, wallets=wallets, development_mode=False)


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def reconciler(store, services) -> AccessReconciler:
    return AccessReconciler(store, services)


@pytest.fixture
def prod_reconciler(store, prod_services) -> AccessReconciler:
    return AccessReconciler(store, prod_services)


async def _add_user(store: MemoryRecordStore, name: str, email: str) -> User:
    user = User(name=name, email=email, password_hash=hash_password(PASSWORD))
    return await store.create_user(user)


@pytest_asyncio.fixture
async def alice(store) -> User:
    return await _add_user(store, "Alice", "alice@example.com")


@pytest_asyncio.fixture
async def bob(store) -> User:
    return await _add_user(store, "Bob", "bob@example.com")


@pytest_asyncio.fixture
async def carol(store) -> User:
    return await _add_user(store, "Carol", "carol@example.com")


@pytest.fixture
def app(settings, store, services) -> FastAPI:
    return create_app(settings=settings, store=store, services=services)


@pytest_asyncio.fixture
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
