"""
In-memory stand-in for the boto3 S3 client calls used by app.integrations.storage.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import hashlib

from botocore.exceptions import ClientError

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)

# S3 never returns more keys than this in one list_objects_v2 page
S3_MAX_PAGE_SIZE = 1000


class FakeListObjectsPaginator:
    """Serves keys in lexicographic order, one page per continuation token."""

    def __init__(self, client: "FakeS3Client"):
        self._client = client

    def paginate(self, Bucket: str, Prefix: str = "", PaginationConfig: Optional[Dict[str, Any]] = None, **kwargs):
        page_size = min((PaginationConfig or {}).get("PageSize", S3_MAX_PAGE_SIZE), S3_MAX_PAGE_SIZE)
        self._client._check("list_objects_v2")
        keys = sorted(key for key in self._client.objects if key.startswith(Prefix))
        for start in range(0, max(len(keys), 1), page_size):
            self._client.list_pages_served += 1
            yield {"Contents": [self._client._describe(key) for key in keys[start:start + page_size]]}


class FakeS3Client:
    def __init__(self):
        self.objects: Dict[str, Dict[str, Any]] = {}
        # Operation name -> exception raised on the next calls to it
        self.failures: Dict[str, Exception] = {}
        # When True, delete_object reports success without removing anything
        self.ignore_deletes = False
        self.list_pages_served = 0
        self._clock = 0

    def _next_time(self) -> datetime:
        self._clock += 1
        return BASE_TIME + timedelta(minutes=self._clock)

    def _check(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def _describe(self, key: str) -> Dict[str, Any]:
        obj = self.objects[key]
        return {
            "Key": key,
            "Size": len(obj["Body"]),
            "LastModified": obj["LastModified"],
            "ETag": obj["ETag"],
        }

    def fail(self, operation: str, code: str = "InternalError") -> None:
        self.failures[operation] = ClientError(
            {"Error": {"Code": code, "Message": f"{operation} failed"}}, operation
        )

    def add_object(self, key: str, body: bytes = b"data", last_modified: Optional[datetime] = None) -> None:
        self.objects[key] = {
            "Body": body,
            "ContentType": None,
            "LastModified": last_modified or self._next_time(),
            "ETag": f'"{hashlib.md5(body).hexdigest()}"',
        }

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: Optional[str] = None, **kwargs):
        self._check("put_object")
        self.add_object(Key, Body)
        self.objects[Key]["ContentType"] = ContentType
        return {"ETag": self.objects[Key]["ETag"]}

    def get_paginator(self, operation_name: str):
        if operation_name != "list_objects_v2":
            raise NotImplementedError(operation_name)
        return FakeListObjectsPaginator(self)

    def delete_object(self, Bucket: str, Key: str, **kwargs):
        self._check("delete_object")
        if not self.ignore_deletes:
            self.objects.pop(Key, None)
        return {}

    def head_object(self, Bucket: str, Key: str, **kwargs):
        self._check("head_object")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        obj = self.objects[Key]
        return {"ContentLength": len(obj["Body"]), "LastModified": obj["LastModified"], "ETag": obj["ETag"]}
