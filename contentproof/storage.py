"""
ContentProof Content-Addressed Storage

One capability, four variants. The orchestrator and verifier only ever see
``StorageProvider``; the variant is chosen once from configuration by
``get_storage_provider``.

- ``Web3StorageProvider``: web3.storage pinning service (API token)
- ``PinataProvider``: Pinata pinning service (JWT)
- ``InfuraProvider``: Infura IPFS node-operator API (project id/secret)
- ``LocalNodeProvider``: self-hosted IPFS node HTTP API (no auth)

Uploads return ``ipfs://<cid>`` URIs. Transient HTTP failures are retried by
the session's urllib3 ``Retry`` policy with exponential backoff up to a fixed
attempt ceiling; after the last attempt the failure surfaces as
``StorageUploadError``.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import BinaryIO, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import ProvenanceConfig
from .errors import ConfigError, StorageFetchError, StorageUploadError
from .logging_config import audit_log

logger = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"
RETRY_STATUSES = (429, 500, 502, 503, 504)

Payload = Union[bytes, bytearray, BinaryIO]


def build_session(max_attempts: int = 4, backoff_factor: float = 0.5) -> requests.Session:
    """
    HTTP session with bounded exponential-backoff retries.

    ``max_attempts`` counts the first try, so ``Retry.total`` is one less.
    POST is retried too: IPFS adds are content-addressed, so a repeated add
    yields the same CID.
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=max(0, max_attempts - 1),
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=None,
        raise_on_status=True,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def cid_from_uri(uri: str) -> str:
    if not uri.startswith(IPFS_SCHEME):
        raise StorageFetchError(uri, "not an ipfs:// URI")
    cid = uri[len(IPFS_SCHEME):].strip("/")
    if not cid:
        raise StorageFetchError(uri, "empty CID")
    return cid


def _payload_size(data: Payload) -> int:
    if isinstance(data, (bytes, bytearray)):
        return len(data)
    current_pos = data.tell()
    data.seek(0, 2)
    size = data.tell()
    data.seek(current_pos)
    return size


class GatewayFetcher:
    """Read-only fetcher for ``ipfs://`` (via a public gateway) and ``http(s)://`` URIs."""

    def __init__(
        self,
        gateway: str = "https://ipfs.io/ipfs/",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.gateway = gateway.rstrip("/") + "/"
        self.timeout = timeout
        self.session = session or build_session()

    def fetch(self, uri: str) -> bytes:
        if uri.startswith(IPFS_SCHEME):
            url = self.gateway + cid_from_uri(uri)
        elif uri.startswith("http://") or uri.startswith("https://"):
            url = uri
        else:
            raise StorageFetchError(uri, "unsupported URI scheme")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise StorageFetchError(uri, str(e)) from e
        return response.content


class StorageProvider(ABC):
    """Upload/fetch capability over content-addressed storage."""

    name = "storage"

    def __init__(
        self,
        gateway: str = "https://ipfs.io/ipfs/",
        timeout: float = 30.0,
        max_attempts: int = 4,
        backoff_factor: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.session = session or build_session(max_attempts, backoff_factor)
        self._gateway = GatewayFetcher(gateway, timeout, self.session)

    def upload(self, data: Payload, filename: str = "content") -> str:
        """
        Upload bytes or a binary file object.

        Returns:
            ``ipfs://<cid>``

        Raises:
            StorageUploadError: After all retries are exhausted
        """
        size = _payload_size(data)
        try:
            cid = self._upload(data, filename)
        except (requests.exceptions.RequestException, ValueError, KeyError) as e:
            logger.warning("Upload via %s failed: %s", self.name, e)
            raise StorageUploadError(self.name, str(e)) from e
        if not cid:
            raise StorageUploadError(self.name, "upload succeeded but no CID returned")
        uri = IPFS_SCHEME + cid
        audit_log.storage_upload(self.name, uri, size)
        return uri

    def fetch(self, uri: str) -> bytes:
        """
        Fetch bytes by URI.

        Raises:
            StorageFetchError: On any transport or HTTP failure
        """
        return self._gateway.fetch(uri)

    @abstractmethod
    def _upload(self, data: Payload, filename: str) -> str:
        """Perform the provider-specific upload and return the CID."""

    def _post_file(self, url: str, data: Payload, filename: str, **kwargs) -> requests.Response:
        response = self.session.post(
            url,
            files={"file": (filename, data)},
            timeout=self.timeout,
            **kwargs
        )
        response.raise_for_status()
        return response


class Web3StorageProvider(StorageProvider):
    """web3.storage pinning service."""

    name = "web3storage"
    UPLOAD_URL = "https://api.web3.storage/upload"

    def __init__(self, token: str, **kwargs):
        super().__init__(**kwargs)
        self._token = token

    def _upload(self, data: Payload, filename: str) -> str:
        response = self._post_file(
            self.UPLOAD_URL, data, filename,
            headers={"Authorization": f"Bearer {self._token}"},
        )
        return response.json()["cid"]


class PinataProvider(StorageProvider):
    """Pinata pinning service; content is read back through an IPFS gateway."""

    name = "pinata"
    UPLOAD_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"

    def __init__(self, jwt: str, **kwargs):
        super().__init__(**kwargs)
        self._jwt = jwt

    def _upload(self, data: Payload, filename: str) -> str:
        response = self._post_file(
            self.UPLOAD_URL, data, filename,
            headers={"Authorization": f"Bearer {self._jwt}"},
        )
        return response.json()["IpfsHash"]


class _IpfsHttpApiProvider(StorageProvider):
    """Shared logic for providers speaking the IPFS node HTTP API (``/api/v0``)."""

    def __init__(self, api_url: str, auth=None, **kwargs):
        super().__init__(**kwargs)
        self.api_url = api_url.rstrip("/")
        self._auth = auth

    def _upload(self, data: Payload, filename: str) -> str:
        response = self._post_file(
            f"{self.api_url}/api/v0/add",
            data, filename,
            params={"pin": "true", "wrap-with-directory": "false"},
            auth=self._auth,
        )
        return _parse_add_response(response.text)

    def fetch(self, uri: str) -> bytes:
        if not uri.startswith(IPFS_SCHEME):
            return super().fetch(uri)
        cid = cid_from_uri(uri)
        try:
            response = self.session.post(
                f"{self.api_url}/api/v0/cat",
                params={"arg": cid},
                auth=self._auth,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise StorageFetchError(uri, str(e)) from e
        return response.content


def _parse_add_response(body: str) -> str:
    """
    Parse an ``/api/v0/add`` response.

    The node may stream NDJSON progress lines; the last line names the CID.
    """
    lines = [line for line in body.strip().splitlines() if line.strip()]
    if not lines:
        raise ValueError("empty add response")
    return json.loads(lines[-1])["Hash"]


class InfuraProvider(_IpfsHttpApiProvider):
    """Infura IPFS API authenticated with project id and secret."""

    name = "infura"
    DEFAULT_API_URL = "https://ipfs.infura.io:5001"

    def __init__(self, project_id: str, project_secret: str, api_url: Optional[str] = None, **kwargs):
        super().__init__(api_url or self.DEFAULT_API_URL, auth=(project_id, project_secret), **kwargs)


class LocalNodeProvider(_IpfsHttpApiProvider):
    """Self-hosted IPFS node; no authentication."""

    name = "local"
    DEFAULT_API_URL = "http://127.0.0.1:5001"

    def __init__(self, api_url: Optional[str] = None, **kwargs):
        super().__init__(api_url or self.DEFAULT_API_URL, **kwargs)


def get_storage_provider(config: ProvenanceConfig, session: Optional[requests.Session] = None) -> StorageProvider:
    """
    Factory: construct the configured storage variant.

    Raises:
        ConfigError: If the provider is unknown or its credentials are missing
    """
    config.require_storage()
    common = dict(
        gateway=config.ipfs_gateway,
        timeout=config.network_timeout_seconds,
        max_attempts=config.upload_max_attempts,
        backoff_factor=config.upload_backoff_factor,
        session=session,
    )
    provider = config.ipfs_provider
    if provider == "web3storage":
        return Web3StorageProvider(config.web3_storage_token, **common)
    if provider == "pinata":
        return PinataProvider(config.pinata_jwt, **common)
    if provider == "infura":
        return InfuraProvider(
            config.infura_project_id,
            config.infura_project_secret,
            api_url=config.ipfs_api_url,
            **common
        )
    if provider == "local":
        return LocalNodeProvider(api_url=config.ipfs_api_url, **common)
    raise ConfigError(["ipfsProvider"], f"Unsupported ipfsProvider {provider!r}")
