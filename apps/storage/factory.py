from apps.storage.bunny import BunnyStorage
from apps.storage.interface import BlobStore
from apps.storage.local import LocalStorage
from apps.storage.memory import MemoryStorage
from apps.storage.s3 import S3HTTPStorage
from apps.storage.schema import (
    BunnyStorageConfig,
    LocalStorageConfig,
    S3StorageConfig,
    StorageConfig,
)


def create_blob_store(config: StorageConfig) -> BlobStore:
    """Pick the blob store implementation described by a storage config."""
    if isinstance(config, S3StorageConfig):
        return S3HTTPStorage(
            endpoint=config.endpoint,
            bucket=config.bucket,
            access_key=config.access_key,
            secret_key=config.secret_key,
            region=config.region,
            virtual_host=config.virtual_host,
        )
    if isinstance(config, BunnyStorageConfig):
        return BunnyStorage(
            api_key=config.api_key,
            storage_zone_name=config.storage_zone_name,
            cdn_hostname=config.cdn_hostname,
            region=config.region,
            token_key=config.token_key,
        )
    if isinstance(config, LocalStorageConfig):
        return LocalStorage(config.path)
    return MemoryStorage()
