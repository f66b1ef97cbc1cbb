"""Bucket settings and low-level object helpers shared by the S3 upload store.

The ``service`` object talks to an S3-compatible backend. It is called with
keyword arguments in the style of the S3 REST API and must provide:

* ``get_object(Bucket, Key)`` returning a mapping with ``Body`` (a readable
  binary stream) and optionally ``ContentLength``;
* ``put_object(Bucket, Key, Body, ...)``;
* ``delete_object(Bucket, Key)``;
* ``list_parts(Bucket, Key, UploadId, PartNumberMarker=..., MaxParts=...)``
  returning a mapping with ``Parts`` and, when paginated, ``IsTruncated`` and
  ``NextPartNumberMarker``.

Failures reported by the backend are raised as :class:`S3ServiceError`.
"""

from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from typing import IO, Any, Mapping, Optional

from .errors import S3ServiceError, StoreError
from .part_producer import TEMP_FILE_PREFIX, clean_up_temp_file

_KIB = 1024
_MIB = 1024 * _KIB
_GIB = 1024 * _MIB
_TIB = 1024 * _GIB

# Error codes meaning that no incomplete part object is stored.
_MISSING_PART_CODES = ("NoSuchKey", "NotFound", "AccessDenied")


def split_ids(id: str) -> tuple[str, str]:
    """Split ``"<upload id>+<multipart id>"``; both are empty without a ``+``."""
    upload_id, separator, multipart_id = id.partition("+")
    if not separator:
        return "", ""
    return upload_id, multipart_id


def is_s3_error(err: BaseException, code: str) -> bool:
    """Tell whether ``err`` is an S3 service error with the given code."""
    return isinstance(err, S3ServiceError) and err.code == code


def _close_body(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        close()


def _with_prefix(prefix: str, key: str) -> str:
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix + key


@dataclass
class S3Bucket:
    """Configuration of an S3 bucket used as upload storage."""

    bucket: str
    service: Any
    # Prepended to the key of every uploaded object.
    object_prefix: str = ""
    # Prepended to .info and .part objects; falls back to object_prefix.
    metadata_object_prefix: str = ""
    max_part_size: int = 5 * _GIB
    min_part_size: int = 5 * _MIB
    preferred_part_size: int = 50 * _MIB
    max_multipart_parts: int = 10000
    max_object_size: int = 5 * _TIB
    # Parts that may wait on disk while another part is being sent.
    max_buffered_parts: int = 20
    # Directory for temporary files; empty means the system default.
    temporary_directory: str = ""
    disable_content_hashes: bool = False

    def key_with_prefix(self, key: str) -> str:
        """Object key for upload content."""
        return _with_prefix(self.object_prefix, key)

    def metadata_key_with_prefix(self, key: str) -> str:
        """Object key for .info and .part objects."""
        return _with_prefix(self.metadata_object_prefix or self.object_prefix, key)

    def calc_optimal_part_size(self, size: int) -> int:
        """Part size that fits ``size`` bytes into at most max_multipart_parts parts."""
        if size <= self.preferred_part_size:
            optimal = self.preferred_part_size
        elif size <= self.preferred_part_size * self.max_multipart_parts:
            optimal = self.preferred_part_size
        else:
            quotient, remainder = divmod(size, self.max_multipart_parts)
            # Round up only when needed, so that an exact fit never exceeds
            # max_part_size when max_object_size == max_part_size * parts.
            optimal = quotient if remainder == 0 else quotient + 1

        if optimal > self.max_part_size:
            raise StoreError(
                f"calcOptimalPartSize: to upload {size} bytes optimalPartSize "
                f"{optimal} must exceed MaxPartSize {self.max_part_size}"
            )
        return optimal

    def list_all_parts(self, id: str) -> list[Mapping[str, Any]]:
        """Every part uploaded so far to the multipart upload, following pagination."""
        upload_id, multipart_id = split_ids(id)
        parts: list[Mapping[str, Any]] = []
        marker = 0
        while True:
            page = self.service.list_parts(
                Bucket=self.bucket,
                Key=self.key_with_prefix(upload_id),
                UploadId=multipart_id,
                PartNumberMarker=marker,
            )
            parts.extend(page.get("Parts") or [])
            if not page.get("IsTruncated"):
                return parts
            marker = page["NextPartNumberMarker"]

    def get_incomplete_part(self, upload_id: str) -> Optional[Mapping[str, Any]]:
        """The stored incomplete part object, or None if there is none."""
        try:
            return self.service.get_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
            )
        except S3ServiceError as err:
            if err.code in _MISSING_PART_CODES:
                return None
            raise

    def download_incomplete_part(self, upload_id: str) -> tuple[Optional[IO[bytes]], int]:
        """Copy the incomplete part into a temporary file.

        Returns the file rewound to its start and its size, or ``(None, 0)``.
        """
        obj = self.get_incomplete_part(upload_id)
        if obj is None:
            return None, 0

        body = obj["Body"]
        try:
            part_file = tempfile.NamedTemporaryFile(
                mode="w+b",
                prefix=TEMP_FILE_PREFIX,
                dir=self.temporary_directory or None,
                delete=False,
            )
            try:
                shutil.copyfileobj(body, part_file)
                size = part_file.tell()
                expected = obj.get("ContentLength")
                if expected is not None and size < expected:
                    raise StoreError("short read of incomplete upload")
                part_file.flush()
                part_file.seek(0)
            except BaseException:
                clean_up_temp_file(part_file)
                raise
        finally:
            _close_body(body)

        return part_file, size

    def put_incomplete_part(self, upload_id: str, file: IO[bytes]) -> None:
        """Store ``file`` as the incomplete part and remove the temporary file."""
        try:
            self.service.put_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
                Body=file,
            )
        finally:
            clean_up_temp_file(file)

    def delete_incomplete_part(self, upload_id: str) -> None:
        """Remove the stored incomplete part object."""
        self.service.delete_object(
            Bucket=self.bucket,
            Key=self.metadata_key_with_prefix(upload_id + ".part"),
        )