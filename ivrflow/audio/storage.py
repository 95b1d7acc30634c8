"""Asset storage for synthesized prompts."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import httpx
import structlog

from ..config import AudioConfig
from ..errors import UploadError

logger = structlog.get_logger(__name__)


@dataclass
class StoredAsset:
    """Location of an uploaded audio asset."""

    url: str
    asset_id: str


class AssetStorage(ABC):
    """Abstract base class for audio asset storage."""

    @abstractmethod
    async def upload(self, data: bytes, key: str, folder: Optional[str] = None) -> StoredAsset:
        """
        Upload audio under ``key``.

        Raises:
            UploadError: on any failure
        """
        pass

    @abstractmethod
    async def delete(self, asset_id: str) -> bool:
        pass

    async def close(self) -> None:
        pass


class HttpAssetStorage(AssetStorage):
    """
    Asset storage service client.

    Uploads as multipart ``file`` with ``folder`` and ``public_id`` fields;
    the service answers with ``{"url", "asset_id"}``.
    """

    def __init__(self, config: AudioConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self._client = client
        self.logger = logger.bind(storage="http")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.storage_url,
                timeout=self.config.synthesis_timeout_s,
            )
        return self._client

    async def upload(self, data: bytes, key: str, folder: Optional[str] = None) -> StoredAsset:
        client = await self._get_client()
        folder = folder or self.config.storage_folder

        try:
            response = await client.post(
                "/upload",
                files={"file": (f"{key}.mp3", data, "audio/mpeg")},
                data={"folder": folder, "public_id": key, "resource_type": "video"},
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("asset_upload_failed", key=key, error=str(e))
            raise UploadError(f"Upload failed for {key}: {e}") from e

        url = body.get("secure_url") or body.get("url")
        asset_id = body.get("asset_id") or body.get("public_id") or f"{folder}/{key}"
        if not url:
            raise UploadError(f"Storage returned no URL for {key}")

        self.logger.debug("asset_uploaded", key=key, asset_id=asset_id, size=len(data))
        return StoredAsset(url=url, asset_id=asset_id)

    async def delete(self, asset_id: str) -> bool:
        client = await self._get_client()
        try:
            response = await client.delete(f"/assets/{asset_id}")
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning("asset_delete_failed", asset_id=asset_id, error=str(e))
            return False
        return True

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


class InMemoryAssetStorage(AssetStorage):
    """Keeps uploads in a dict; URLs point at ``base_url``."""

    def __init__(self, base_url: str = "https://assets.local", fail_times: int = 0) -> None:
        self.base_url = base_url.rstrip("/")
        self.fail_times = fail_times
        self.assets: Dict[str, bytes] = {}
        self.upload_calls = 0
        self.deleted: list = []

    async def upload(self, data: bytes, key: str, folder: Optional[str] = None) -> StoredAsset:
        self.upload_calls += 1
        if self.upload_calls <= self.fail_times:
            raise UploadError(f"Simulated upload failure for {key}")

        asset_id = f"{folder}/{key}" if folder else key
        self.assets[asset_id] = data
        return StoredAsset(url=f"{self.base_url}/{asset_id}.mp3", asset_id=asset_id)

    async def delete(self, asset_id: str) -> bool:
        self.deleted.append(asset_id)
        return self.assets.pop(asset_id, None) is not None
