"""Local blob store and buffer encryption."""

import os

import pytest

from docshare.errors import BlobStoreError
from docshare.hashutil import sha256_hex
from docshare.ipfs import LocalBlobStore, decrypt_buffer, encrypt_buffer


@pytest.mark.parametrize("data", [b"", b"x", os.urandom(1024 * 1024 + 17)])
def test_encrypt_buffer_recovers_plaintext(data: bytes) -> None:
    encrypted, key = encrypt_buffer(data)
    assert encrypted != data
    assert decrypt_buffer(encrypted, key) == data


def test_encrypt_buffer_uses_fresh_key_and_nonce() -> None:
    one, key_one = encrypt_buffer(b"same")
    two, key_two = encrypt_buffer(b"same")
    assert key_one != key_two
    assert one != two


def test_decrypt_with_wrong_key_fails() -> None:
    encrypted, _ = encrypt_buffer(b"payload")
    _, other_key = encrypt_buffer(b"other")
    with pytest.raises(BlobStoreError):
        decrypt_buffer(encrypted, other_key)


async def test_upload_download(blob_store: LocalBlobStore) -> None:
    result = await blob_store.upload(b"abc")
    assert result.address == LocalBlobStore.address_for(b"abc")
    assert result.size == 3
    assert result.encryption_key is None
    assert blob_store.is_valid_address(result.address)
    assert await blob_store.verify_upload(result.address)
    assert await blob_store.download(result.address) == b"abc"


async def test_encrypted_upload(blob_store: LocalBlobStore) -> None:
    result = await blob_store.upload(b"top secret", encrypt=True)
    assert result.encryption_key
    raw = await blob_store.download(result.address)
    assert raw != b"top secret"
    clear = await blob_store.download(result.address, decrypt=True, encryption_key=result.encryption_key)
    assert clear == b"top secret"


async def test_download_rejects_bad_address(blob_store: LocalBlobStore) -> None:
    with pytest.raises(BlobStoreError, match="Invalid content address"):
        await blob_store.download("../../etc/passwd")


async def test_download_missing_blob(blob_store: LocalBlobStore) -> None:
    with pytest.raises(BlobStoreError, match="not found"):
        await blob_store.download(LocalBlobStore.address_for(b"never stored"))


def test_status(blob_store: LocalBlobStore) -> None:
    status = blob_store.get_status()
    assert status["isConnected"] is True
    assert status["mode"] == "development"


def test_local_address_is_sha256_of_content() -> None:
    assert LocalBlobStore.address_for(b"abc") == "Qm" + sha256_hex(b"abc")[:44]
