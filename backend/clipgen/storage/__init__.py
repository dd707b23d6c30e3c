"""
Storage module: uploaded assets, finished outputs and the optional S3 mirror.
"""
from clipgen.storage.assets import AssetStore
from clipgen.storage.result_store import ResultStore
from clipgen.storage.s3_client import get_s3_storage, S3Storage

__all__ = ["AssetStore", "ResultStore", "get_s3_storage", "S3Storage"]
