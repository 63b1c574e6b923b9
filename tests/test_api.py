"""HTTP surface: auth, documents and sharing routers."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

PASSWORD = "s3cret-pass"


async def _register(client: AsyncClient, name: str, email: str) -> dict:
    response = await client.post(
        "/api/auth/register",
        json={"name": name, "email": email, "password": PASSWORD},
    )
    assert response.status_code == 201, response.text
    payload = response.json()
    return {"token": payload["token"], "user": payload["user"],
            "headers": {"Authorization": f"Bearer {payload['token']}"}}


async def _upload(client: AsyncClient, headers: dict, data: bytes = b"abc",
                  name: str = "report.pdf", mime: str = "application/pdf", **form) -> dict:
    form.setdefault("title", "Quarterly report")
    response = await client.post(
        "/api/documents/upload",
        headers=headers,
        files={"document": (name, data, mime)},
        data=form,
    )
    assert response.status_code == 201, response.text
    return response.json()


async def test_health(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["mode"] == "development"
    assert payload["services"]["blockchain"]["isConnected"] is True


async def test_register_login_me(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "Alice@Example.com")
    assert alice["user"]["email"] == "alice@example.com"
    assert alice["user"]["walletAddress"] is None

    login = await async_client.post("/api/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
    assert login.status_code == 200
    headers = {"Authorization": f"Bearer {login.json()['token']}"}

    me = await async_client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["user"]["id"] == alice["user"]["id"]


async def test_register_duplicate_email(async_client: AsyncClient) -> None:
    await _register(async_client, "Alice", "alice@example.com")
    response = await async_client.post(
        "/api/auth/register", json={"name": "Again", "email": "alice@example.com", "password": PASSWORD})
    assert response.status_code == 400


async def test_register_short_password(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/api/auth/register", json={"name": "Al", "email": "al@example.com", "password": "123"})
    assert response.status_code == 400
    assert "at least 6" in response.json()["message"]


async def test_login_wrong_password(async_client: AsyncClient) -> None:
    await _register(async_client, "Alice", "alice@example.com")
    response = await async_client.post("/api/auth/login", json={"email": "alice@example.com", "password": "nope!!"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


async def test_missing_and_bad_token(async_client: AsyncClient) -> None:
    response = await async_client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["message"] == "No token, authorization denied"

    response = await async_client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["message"] == "Token is not valid"


async def test_profile_update_and_user_search(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    await _register(async_client, "Bob", "bob@example.com")

    update = await async_client.put("/api/auth/me", headers=alice["headers"], json={"name": "Alice B"})
    assert update.status_code == 200
    assert update.json()["user"]["name"] == "Alice B"

    search = await async_client.get("/api/auth/users/search", headers=alice["headers"],
                                    params={"email": "example"})
    assert search.status_code == 200
    assert [u["email"] for u in search.json()["users"]] == ["bob@example.com"]

    short = await async_client.get("/api/auth/users/search", headers=alice["headers"], params={"email": "ex"})
    assert short.status_code == 400


async def test_wallet_and_refresh(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    wallet = await async_client.get("/api/auth/wallet", headers=alice["headers"])
    assert wallet.status_code == 200
    assert wallet.json()["address"].startswith("0x")
    assert wallet.json()["balanceFormatted"]

    refresh = await async_client.post("/api/auth/refresh", headers=alice["headers"])
    assert refresh.status_code == 200
    assert refresh.json()["token"]


async def test_upload_and_fetch(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    payload = await _upload(async_client, alice["headers"])

    doc = payload["document"]
    assert doc["size"] == 3
    assert doc["downloadCount"] == 0
    assert doc["sharedWith"] == []
    assert payload["blockchain"]["transactionHash"].startswith("0x")
    wallet = await async_client.get("/api/auth/wallet", headers=alice["headers"])
    assert payload["blockchain"]["walletAddress"] == wallet.json()["address"]

    me = await async_client.get("/api/auth/me", headers=alice["headers"])
    assert me.json()["user"]["walletAddress"] == wallet.json()["address"]

    detail = await async_client.get(f"/api/documents/{doc['id']}", headers=alice["headers"])
    assert detail.status_code == 200
    assert detail.json()["document"]["userPermission"] == "owner"
    assert detail.json()["document"]["owner"]["email"] == "alice@example.com"

    mine = await async_client.get("/api/documents/mine", headers=alice["headers"])
    assert mine.json()["pagination"]["total"] == 1


async def test_upload_validation(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")

    no_file = await async_client.post("/api/documents/upload", headers=alice["headers"], data={"title": "x"})
    assert no_file.status_code == 400
    assert no_file.json()["message"] == "No file provided"

    bad_type = await async_client.post(
        "/api/documents/upload",
        headers=alice["headers"],
        files={"document": ("run.exe", b"MZ", "application/x-msdownload")},
        data={"title": "x"},
    )
    assert bad_type.status_code == 400
    assert "not allowed" in bad_type.json()["message"]

    no_title = await async_client.post(
        "/api/documents/upload",
        headers=alice["headers"],
        files={"document": ("a.txt", b"hi", "text/plain")},
    )
    assert no_title.status_code == 400


async def test_download_streams_bytes_and_counts(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    doc = (await _upload(async_client, alice["headers"], data=b"plain text", name="notes.txt",
                         mime="text/plain", encrypt="true"))["document"]
    assert doc["isEncrypted"] is True

    response = await async_client.get(f"/api/documents/{doc['id']}/download", headers=alice["headers"])
    assert response.status_code == 200
    assert response.content == b"plain text"
    assert "notes.txt" in response.headers["content-disposition"]

    detail = await async_client.get(f"/api/documents/{doc['id']}", headers=alice["headers"])
    assert detail.json()["document"]["downloadCount"] == 1


async def test_share_flow(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    bob = await _register(async_client, "Bob", "bob@example.com")
    bob_wallet = (await async_client.get("/api/auth/wallet", headers=bob["headers"])).json()["address"]
    doc = (await _upload(async_client, alice["headers"]))["document"]

    hidden = await async_client.get(f"/api/documents/{doc['id']}", headers=bob["headers"])
    assert hidden.status_code == 404

    grant = await async_client.post(
        "/api/sharing/grant",
        headers=alice["headers"],
        json={"documentId": doc["id"], "userEmail": "bob@example.com", "permissions": "read"},
    )
    assert grant.status_code == 200, grant.text
    assert grant.json()["message"] == "Document shared successfully"
    assert grant.json()["blockchain"]["targetWalletAddress"] == bob_wallet

    again = await async_client.post(
        "/api/sharing/grant",
        headers=alice["headers"],
        json={"documentId": doc["id"], "userEmail": "bob@example.com", "permissions": "read"},
    )
    assert again.status_code == 400

    upgrade = await async_client.post(
        "/api/sharing/grant",
        headers=alice["headers"],
        json={"documentId": doc["id"], "userEmail": "bob@example.com", "permissions": "write"},
    )
    assert upgrade.json()["message"] == "Document sharing permissions updated successfully"

    shared = await async_client.get("/api/documents/shared-with-me", headers=bob["headers"])
    assert [d["id"] for d in shared.json()["documents"]] == [doc["id"]]
    assert shared.json()["documents"][0]["permissions"] == "write"

    access = await async_client.get(f"/api/sharing/access/{doc['id']}", headers=bob["headers"])
    assert access.json()["hasAccess"] is True
    assert access.json()["verification"] == {"database": True, "blockchain": True}
    assert access.json()["document"]["isOwner"] is False

    download = await async_client.get(f"/api/documents/{doc['id']}/download", headers=bob["headers"])
    assert download.content == b"abc"

    forbidden = await async_client.delete(f"/api/documents/{doc['id']}", headers=bob["headers"])
    assert forbidden.status_code == 403

    info = await async_client.get(f"/api/sharing/document/{doc['id']}", headers=alice["headers"])
    assert info.status_code == 200
    assert info.json()["blockchainAccessors"] == [bob_wallet]
    assert info.json()["stats"]["downloadCount"] == 1

    my_shares = await async_client.get("/api/sharing/my-shares", headers=alice["headers"])
    assert my_shares.json()["sharingActivity"][0]["totalShares"] == 1

    revoke = await async_client.post(
        "/api/sharing/revoke",
        headers=alice["headers"],
        json={"documentId": doc["id"], "userId": bob["user"]["id"]},
    )
    assert revoke.status_code == 200

    gone = await async_client.get(f"/api/documents/{doc['id']}/download", headers=bob["headers"])
    assert gone.status_code == 404


async def test_grant_requires_fields(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    response = await async_client.post("/api/sharing/grant", headers=alice["headers"], json={"documentId": "x"})
    assert response.status_code == 400
    assert response.json()["message"] == "Document ID and user email are required"


async def test_grant_rejects_unknown_permission(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    await _register(async_client, "Bob", "bob@example.com")
    doc = (await _upload(async_client, alice["headers"]))["document"]
    response = await async_client.post(
        "/api/sharing/grant",
        headers=alice["headers"],
        json={"documentId": doc["id"], "userEmail": "bob@example.com", "permissions": "admin"},
    )
    assert response.status_code == 400


async def test_batch_grant(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    await _register(async_client, "Bob", "bob@example.com")
    await _register(async_client, "Carol", "carol@example.com")
    doc = (await _upload(async_client, alice["headers"]))["document"]

    response = await async_client.post(
        "/api/sharing/batch-grant",
        headers=alice["headers"],
        json={"documentId": doc["id"],
              "userEmails": ["bob@example.com", "carol@example.com", "ghost@example.com"]},
    )
    assert response.status_code == 200, response.text
    sharing = response.json()["sharing"]
    assert sharing["totalShared"] == 2
    assert sharing["totalRequested"] == 3
    assert sharing["notFound"] == ["ghost@example.com"]
    assert len(response.json()["blockchain"]["targetAddresses"]) == 2

    too_many = await async_client.post(
        "/api/sharing/batch-grant",
        headers=alice["headers"],
        json={"documentId": doc["id"], "userEmails": [f"u{i}@example.com" for i in range(51)]},
    )
    assert too_many.status_code == 400
    assert too_many.json()["message"] == "Cannot share with more than 50 users at once"


async def test_update_and_delete(async_client: AsyncClient) -> None:
    alice = await _register(async_client, "Alice", "alice@example.com")
    doc = (await _upload(async_client, alice["headers"]))["document"]

    update = await async_client.put(f"/api/documents/{doc['id']}", headers=alice["headers"],
                                    json={"title": "Renamed"})
    assert update.status_code == 200
    assert update.json()["document"]["title"] == "Renamed"

    delete = await async_client.delete(f"/api/documents/{doc['id']}", headers=alice["headers"])
    assert delete.status_code == 200

    after = await async_client.get(f"/api/documents/{doc['id']}", headers=alice["headers"])
    assert after.status_code == 404
    assert after.json()["message"] == "Document not found"
