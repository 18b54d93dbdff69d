"""Time-limited access grants for the purchased asset."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from entitlement_api.core.settings import Settings
from entitlement_api.services.errors import AssetStoreError


@dataclass(slots=True, frozen=True)
class AccessGrant:
    """A URL that resolves to the asset until ``expires_at``."""

    url: str
    expires_at: datetime


class AssetStore(Protocol):
    async def create_time_limited_grant(self, asset_path: str, ttl_seconds: int) -> AccessGrant:
        ...


class S3AssetStore:
    """Mint presigned GET URLs for objects in a private S3-compatible bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        force_path_style: bool = False,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        if not bucket:
            raise ValueError("Asset storage bucket is not configured")
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url
        self._force_path_style = force_path_style
        self._client = (client_factory or self._build_client)()

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3AssetStore":
        return cls(
            bucket=settings.asset_storage_bucket or "",
            region=settings.asset_storage_region,
            endpoint_url=settings.asset_storage_endpoint,
            force_path_style=settings.asset_storage_force_path_style,
        )

    def _build_client(self):
        config = Config(signature_version="s3v4")
        if self._force_path_style:
            config = config.merge(Config(s3={"addressing_style": "path"}))
        return boto3.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url or None,
            config=config,
        )

    async def create_time_limited_grant(self, asset_path: str, ttl_seconds: int) -> AccessGrant:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        issued_at = datetime.now(timezone.utc)
        try:
            url = await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": asset_path},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning(
                "Failed to sign asset URL",
                bucket=self._bucket,
                asset_path=asset_path,
                error=str(exc),
            )
            raise AssetStoreError(f"Could not create access grant for {asset_path}") from exc

        if not url:
            raise AssetStoreError(f"Asset store returned an empty URL for {asset_path}")
        return AccessGrant(url=url, expires_at=issued_at + timedelta(seconds=ttl_seconds))


__all__ = ["AccessGrant", "AssetStore", "S3AssetStore"]
