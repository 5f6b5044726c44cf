"""Models for the filesystem app.

Upload - bytes that landed (or may land) in the blob store but are not bound to a path yet
Blob - one physical object in the blob store, reference counted by File rows
File - one path in the virtual namespace, pointing at exactly one Blob
StoredConfig - configuration persisted for background jobs (singleton, key "storage")
"""
from tortoise import fields, models


class Upload(models.Model):
    id = fields.IntField(pk=True)
    blob_id = fields.CharField(max_length=64, unique=True)
    # commit deadline; upload GC reclaims the bytes after this (plus a grace window)
    expires_at = fields.DatetimeField(index=True)
    # only known when the bytes went through the proxy or were registered afterwards
    content_type = fields.CharField(max_length=255, null=True)
    size = fields.BigIntField(null=True)

    class Meta:
        default_connection = "default"
        table = "uploads"


class Blob(models.Model):
    id = fields.IntField(pk=True)
    blob_id = fields.CharField(max_length=64, unique=True)
    content_type = fields.CharField(max_length=255)
    size = fields.BigIntField()
    # number of File rows whose blob_id equals this blob_id
    ref_count = fields.IntField(default=0)
    updated_at = fields.DatetimeField()

    class Meta:
        default_connection = "default"
        table = "blobs"
        indexes = (("ref_count", "updated_at"),)


class File(models.Model):
    id = fields.IntField(pk=True)
    path = fields.CharField(max_length=1024, unique=True)
    blob_id = fields.CharField(max_length=64, index=True)
    # attributes are path-scoped, they never travel with a move or copy
    expires_at = fields.DatetimeField(null=True, index=True)

    class Meta:
        default_connection = "default"
        table = "files"


class StoredConfig(models.Model):
    key = fields.CharField(pk=True, max_length=64)
    value = fields.JSONField()
    # sha256 of the client supplied part of value, skips no-op writes
    checksum = fields.CharField(max_length=64)
    version = fields.IntField(default=1)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        default_connection = "default"
        table = "stored_config"
