"""
IPFS integration for document blobs
Talks to an IPFS HTTP API (Infura-style, basic auth with project credentials)
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

import requests
from fastapi.concurrency import run_in_threadpool

from docshare.errors import BlobStoreError
from docshare.ipfs import BlobStore

logger = logging.getLogger(__name__)

CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")
# CIDv1, base32 multibase ('b') with one of the common codec prefixes
CIDV1_RE = re.compile(r"^ba[a-z][a-z2-7]{48,}$")

DOWNLOAD_TIMEOUT = 30
VERIFY_TIMEOUT = 10
UPLOAD_TIMEOUT = 120


class IPFSBlobStore(BlobStore):
    """IPFS HTTP API client implementing the BlobStore contract."""

    def __init__(self, api_url: str, project_id: Optional[str] = None,
                 project_secret: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        """
        Args:
            api_url: IPFS API base, e.g. https://ipfs.infura.io:5001/api/v0
            project_id: Project id used as basic-auth user
            project_secret: Project secret used as basic-auth password
            session: Optional preconfigured requests session
        """
        self.base_url = api_url.rstrip("/")
        self.session = session or requests.Session()
        if project_id and project_secret:
            self.session.auth = (project_id, project_secret)
        logger.info("IPFS client initialized for %s", self.base_url)

    def _post(self, path: str, timeout: float, **kwargs) -> requests.Response:
        response = self.session.post(f"{self.base_url}/{path}", timeout=timeout, **kwargs)
        if response.status_code != 200:
            raise BlobStoreError(
                f"IPFS {path} failed",
                detail=f"{response.status_code}: {response.text[:200]}",
            )
        return response

    def _put(self, data: bytes) -> Tuple[str, int]:
        files = {"file": ("document", data, "application/octet-stream")}
        params = {"pin": "true", "cid-version": "1", "hash": "sha2-256", "wrap-with-directory": "false"}
        result = self._post("add", UPLOAD_TIMEOUT, files=files, params=params).json()

        address = result.get("Hash")
        if not address:
            raise BlobStoreError("Failed to get IPFS hash from upload")
        if not self._exists(address):
            raise BlobStoreError("Upload verification failed", detail=address)
        return address, int(result.get("Size", len(data)))

    def _get(self, address: str) -> bytes:
        return self._post("cat", DOWNLOAD_TIMEOUT, params={"arg": address}).content

    def _exists(self, address: str) -> bool:
        # reading the first chunk back is enough to prove the blob is retrievable
        try:
            response = self._post("cat", VERIFY_TIMEOUT, params={"arg": address}, stream=True)
        except requests.RequestException as e:
            raise BlobStoreError("Upload verification failed", detail=str(e)) from e
        try:
            first = next(response.iter_content(chunk_size=1024), b"")
        finally:
            response.close()
        return len(first) > 0

    async def pin(self, address: str) -> bool:
        try:
            await run_in_threadpool(self._post, "pin/add", DOWNLOAD_TIMEOUT, params={"arg": address})
        except (requests.RequestException, BlobStoreError) as e:
            raise BlobStoreError("Failed to pin file", detail=str(e)) from e
        return True

    async def unpin(self, address: str) -> bool:
        try:
            await run_in_threadpool(self._post, "pin/rm", DOWNLOAD_TIMEOUT, params={"arg": address})
        except (requests.RequestException, BlobStoreError) as e:
            # not pinned is a normal outcome here
            logger.warning("IPFS unpin failed for %s: %s", address, e)
            return False
        return True

    def is_valid_address(self, address: Any) -> bool:
        if not isinstance(address, str):
            return False
        return bool(CIDV0_RE.match(address) or CIDV1_RE.match(address))

    def is_connected(self) -> bool:
        """Check if the IPFS API answers."""
        try:
            response = self.session.post(f"{self.base_url}/id", timeout=VERIFY_TIMEOUT)
            return response.status_code == 200
        except requests.RequestException:
            return False

    def get_status(self) -> Dict[str, Any]:
        return {
            "isConnected": self.is_connected(),
            "mode": self.mode,
            "apiUrl": self.base_url,
        }
