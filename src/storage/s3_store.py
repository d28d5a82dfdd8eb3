from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError
from cryptography.fernet import InvalidToken

from .base import StorageEngine, StorageUnavailable
from .secure import to_fernet


@dataclass
class S3Location:
    bucket: str
    prefix: str

    def object_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def item_key(self, object_key: str) -> str:
        if self.prefix and object_key.startswith(f"{self.prefix}/"):
            return object_key[len(self.prefix) + 1 :]
        return object_key


class S3StorageEngine(StorageEngine):
    """
    S3-backed storage: one object per key under `prefix`, optionally encrypted
    at rest with Fernet.

    boto3 is blocking, so every call runs in a worker thread. Missing objects
    read as None; any other S3 error is logged by the base class and degrades
    the operation.
    """

    name = "remote"

    def __init__(
        self,
        *,
        bucket: Optional[str],
        prefix: str = "hims",
        s3: Optional[object] = None,
        fernet_key: Optional[str | bytes] = None,
        region_name: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise StorageUnavailable("remote storage requires a bucket")
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._loc = S3Location(bucket=bucket, prefix=prefix.strip("/"))
        self._fernet = to_fernet(fernet_key) if fernet_key else None

    def _encode(self, value: str) -> bytes:
        data = value.encode("utf-8")
        return self._fernet.encrypt(data) if self._fernet else data

    def _decode(self, body: bytes) -> str:
        if self._fernet is None:
            return body.decode("utf-8")
        try:
            return self._fernet.decrypt(body).decode("utf-8")
        except InvalidToken as ex:
            raise ValueError("Failed to decrypt object: invalid Fernet token") from ex

    def _get_sync(self, key: str) -> Optional[str]:
        try:
            resp = self._s3.get_object(Bucket=self._loc.bucket, Key=self._loc.object_key(key))
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise
        return self._decode(resp["Body"].read())

    def _put_sync(self, key: str, value: str) -> None:
        self._s3.put_object(
            Bucket=self._loc.bucket,
            Key=self._loc.object_key(key),
            Body=self._encode(value),
            ContentType="application/octet-stream",
        )

    def _delete_sync(self, key: str) -> None:
        self._s3.delete_object(Bucket=self._loc.bucket, Key=self._loc.object_key(key))

    def _list_sync(self) -> List[str]:
        keys: List[str] = []
        kwargs = {"Bucket": self._loc.bucket, "Prefix": f"{self._loc.prefix}/" if self._loc.prefix else ""}
        while True:
            resp = self._s3.list_objects_v2(**kwargs)
            for obj in resp.get("Contents", []):
                keys.append(self._loc.item_key(obj["Key"]))
            if not resp.get("IsTruncated"):
                return keys
            kwargs["ContinuationToken"] = resp["NextContinuationToken"]

    async def _get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get_sync, key)

    async def _set(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._put_sync, key, value)

    async def _remove(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def _keys(self) -> List[str]:
        return await asyncio.to_thread(self._list_sync)
