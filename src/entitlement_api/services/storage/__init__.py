from .asset_store import AccessGrant, AssetStore, S3AssetStore

__all__ = ["AccessGrant", "AssetStore", "S3AssetStore"]
