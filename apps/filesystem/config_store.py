"""Configuration persisted for the background jobs.

Background jobs run without a caller, so the last client supplied Config is
kept in the stored_config table. `freeze_gc` and `allow_clear_all_files`
are operator-only: they are set by hand in the database and every write
from a client preserves them.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Optional

from tortoise.transactions import in_transaction

from apps.filesystem.models import StoredConfig
from apps.filesystem.schema import Config

logger = logging.getLogger(__name__)

CONFIG_KEY = "storage"
OPERATOR_FIELDS = ("freeze_gc", "allow_clear_all_files")


@dataclass
class StoredSettings:
    config: Config
    version: int
    freeze_gc: bool = False
    allow_clear_all_files: bool = False


def checksum(value: dict) -> str:
    payload = json.dumps(value, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _client_value(config: Config) -> dict:
    return config.model_dump(mode="json")


async def get_stored_config(key: str = CONFIG_KEY) -> Optional[StoredSettings]:
    row = await StoredConfig.filter(key=key).first()
    if not row:
        return None
    value = dict(row.value)
    operator = {name: bool(value.pop(name, False)) for name in OPERATOR_FIELDS}
    return StoredSettings(config=Config.model_validate(value), version=row.version, **operator)


async def ensure_config_stored(config: Config, key: str = CONFIG_KEY) -> bool:
    """Store the client config, keeping operator-only fields. Returns True if written."""
    value = _client_value(config)
    digest = checksum(value)

    async with in_transaction():
        row = await StoredConfig.filter(key=key).select_for_update().first()
        if row is None:
            await StoredConfig.create(key=key, value=value, checksum=digest, version=1)
            logger.info("Stored config %r (version 1)", key)
            return True
        if row.checksum == digest:
            return False

        merged = dict(value)
        for name in OPERATOR_FIELDS:
            if name in row.value:
                merged[name] = row.value[name]
        row.value = merged
        row.checksum = digest
        row.version += 1
        await row.save()
        logger.info("Updated config %r (version %d)", key, row.version)
        return True


async def set_operator_flags(
    freeze_gc: Optional[bool] = None,
    allow_clear_all_files: Optional[bool] = None,
    key: str = CONFIG_KEY,
) -> None:
    """Operator tooling: flip the dashboard-only flags on the stored config."""
    async with in_transaction():
        row = await StoredConfig.filter(key=key).select_for_update().first()
        if row is None:
            raise LookupError(f"No stored config with key {key!r}")
        value = dict(row.value)
        if freeze_gc is not None:
            value["freeze_gc"] = freeze_gc
        if allow_clear_all_files is not None:
            value["allow_clear_all_files"] = allow_clear_all_files
        row.value = value
        row.version += 1
        await row.save()
