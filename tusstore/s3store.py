"""Upload store that keeps tus uploads in an S3-compatible bucket.

Every upload is backed by an S3 multipart upload. A JSON ``.info`` object
next to it describes the upload. Trailing data too small to form a part is
parked in a ``.part`` object until more arrives.

Besides the calls documented in :mod:`tusstore.s3bucket`, the service object
must provide ``create_multipart_upload``, ``upload_part``,
``upload_part_copy``, ``complete_multipart_upload``,
``abort_multipart_upload`` and ``delete_objects``. These take keyword
arguments in the style of the S3 REST API.
"""

from __future__ import annotations

import copy
import os
import re
import secrets
import shutil
import tempfile
import threading
import urllib.error
import urllib.request
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from http import HTTPStatus
from typing import IO, Any, BinaryIO, Optional, Sequence

from .errors import HTTPError, MultiError, NotFoundError, S3ServiceError, StoreError
from .fileinfo import FileInfo
from .part_producer import PartProducer, clean_up_temp_file
from .s3bucket import S3Bucket, is_s3_error, split_ids

# Every character that is not allowed in an HTTP header value.
_NON_PRINTABLE = re.compile(r"[^\x09\x20-\x7E]")

_CONCAT_TEMP_PREFIX = "tusd-s3-concat-tmp-"
_PRESIGN_EXPIRY_SECONDS = 15 * 60


def _close_body(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        close()


class _ChainedReader:
    """Reads several binary streams one after another."""

    def __init__(self, *readers: Any) -> None:
        self._readers = deque(readers)

    def read(self, size: int = -1) -> bytes:
        while self._readers:
            chunk = self._readers[0].read(size)
            if chunk:
                return chunk
            self._readers.popleft()
        return b""


@dataclass
class S3Store(S3Bucket):
    """Stores uploads as S3 multipart uploads with JSON info objects."""

    def new_upload(self, info: FileInfo) -> "S3Upload":
        """Create the multipart upload and its info object."""
        if info.size > self.max_object_size:
            raise StoreError(
                f"s3store: upload size of {info.size} bytes exceeds "
                f"MaxObjectSize of {self.max_object_size} bytes"
            )

        info = copy.deepcopy(info)
        upload_id = info.id or secrets.token_hex(16)

        metadata = {
            key: _NON_PRINTABLE.sub("?", value)
            for key, value in (info.meta_data or {}).items()
        }

        try:
            response = self.service.create_multipart_upload(
                Bucket=self.bucket,
                Key=self.key_with_prefix(upload_id),
                Metadata=metadata,
            )
        except Exception as err:
            raise StoreError(f"s3store: unable to create multipart upload:\n{err}") from err

        info.id = f"{upload_id}+{response['UploadId']}"
        info.storage = {
            "Type": "s3store",
            "Bucket": self.bucket,
            "Key": self.key_with_prefix(upload_id),
        }

        upload = S3Upload(info.id, self)
        try:
            upload._write_info(info)
        except Exception as err:
            raise StoreError(f"s3store: unable to create info file:\n{err}") from err
        return upload

    def get_upload(self, id: str) -> "S3Upload":
        """Return a handle for an existing upload; nothing is fetched yet."""
        return S3Upload(id, self)


class S3Upload:
    """One upload inside an :class:`S3Store`."""

    def __init__(self, id: str, store: S3Store) -> None:
        self.id = id
        self.store = store
        self._info: Optional[FileInfo] = None

    def get_info(self) -> FileInfo:
        """The upload's info, fetched from S3 on first use and cached afterwards."""
        if self._info is None:
            self._info = self._fetch_info()
        return copy.deepcopy(self._info)

    def _fetch_info(self) -> FileInfo:
        store = self.store
        upload_id, _ = split_ids(self.id)

        try:
            obj = store.service.get_object(
                Bucket=store.bucket,
                Key=store.metadata_key_with_prefix(upload_id + ".info"),
            )
        except S3ServiceError as err:
            if err.code == "NoSuchKey":
                raise NotFoundError() from err
            raise

        body = obj["Body"]
        try:
            info = FileInfo.from_json(body.read())
        finally:
            _close_body(body)

        try:
            parts = store.list_all_parts(self.id)
        except S3ServiceError as err:
            # The multipart upload is gone, so it has been completed: the info
            # object still exists, hence the whole upload is there.
            if err.code in ("NoSuchUpload", "NoSuchKey"):
                info.offset = info.size
                return info
            raise

        offset = sum(part["Size"] for part in parts)

        incomplete = store.get_incomplete_part(upload_id)
        if incomplete is not None:
            _close_body(incomplete.get("Body"))
            offset += incomplete.get("ContentLength") or 0

        info.offset = offset
        return info

    def _write_info(self, info: FileInfo) -> None:
        store = self.store
        upload_id, _ = split_ids(self.id)
        self._info = copy.deepcopy(info)
        payload = info.to_json()
        store.service.put_object(
            Bucket=store.bucket,
            Key=store.metadata_key_with_prefix(upload_id + ".info"),
            Body=payload,
            ContentLength=len(payload),
        )

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Append data from ``src`` at ``offset``; return the bytes accepted."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        info = self.get_info()
        size = info.size
        optimal_part_size = store.calc_optimal_part_size(size)

        parts = store.list_all_parts(self.id)
        next_part_number = len(parts) + 1

        incomplete_file, incomplete_size = store.download_incomplete_part(upload_id)
        reader: Any = src
        try:
            if incomplete_file is not None:
                store.delete_incomplete_part(upload_id)
                reader = _ChainedReader(incomplete_file, src)

            producer = PartProducer(
                reader,
                temporary_directory=store.temporary_directory,
                max_buffered=store.max_buffered_parts,
            )
            worker = threading.Thread(
                target=producer.produce, args=(optimal_part_size,), daemon=True
            )
            worker.start()

            bytes_uploaded = 0
            try:
                for file in producer.files:
                    n = os.fstat(file.fileno()).st_size
                    is_final_chunk = (
                        not info.size_is_deferred
                        and size == (offset - incomplete_size) + n
                    )
                    if n >= store.min_part_size or is_final_chunk:
                        self._put_part(upload_id, multipart_id, next_part_number, file, n)
                    else:
                        store.put_incomplete_part(upload_id, file)
                        bytes_uploaded += n
                        return bytes_uploaded - incomplete_size

                    offset += n
                    bytes_uploaded += n
                    next_part_number += 1
            finally:
                producer.done.set()
                worker.join()
                for leftover in producer.files:
                    clean_up_temp_file(leftover)

            if producer.error is not None:
                raise producer.error
            return bytes_uploaded - incomplete_size
        finally:
            if incomplete_file is not None:
                clean_up_temp_file(incomplete_file)

    def _put_part(
        self,
        upload_id: str,
        multipart_id: str,
        part_number: int,
        file: IO[bytes],
        size: int,
    ) -> None:
        store = self.store
        params = {
            "Bucket": store.bucket,
            "Key": store.key_with_prefix(upload_id),
            "UploadId": multipart_id,
            "PartNumber": part_number,
        }
        try:
            if not store.disable_content_hashes:
                store.service.upload_part(Body=file, **params)
            else:
                self._put_part_presigned(params, file, size)
        finally:
            clean_up_temp_file(file)

    def _put_part_presigned(self, params: dict, file: IO[bytes], size: int) -> None:
        # Sending the body ourselves keeps it out of the request signature,
        # so no content hash has to be computed.
        presign = getattr(self.store.service, "generate_presigned_url", None)
        if presign is None:
            raise StoreError("s3store: failed to cast S3 service for presigning")

        url = presign("upload_part", Params=params, ExpiresIn=_PRESIGN_EXPIRY_SECONDS)
        request = urllib.request.Request(
            url,
            data=file,
            method="PUT",
            headers={"Content-Length": str(size)},
        )
        try:
            with urllib.request.urlopen(request) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as err:
            status = err.code
            body = err.read()

        if status != HTTPStatus.OK:
            raise StoreError(
                f"s3store: unexpected response code {status} for presigned upload: "
                f"{body.decode('utf-8', 'replace')}"
            )

    def get_reader(self) -> BinaryIO:
        """Stream of the finished upload's content."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        try:
            obj = store.service.get_object(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
            )
            return obj["Body"]
        except S3ServiceError as err:
            if err.code != "NoSuchKey":
                raise

        # Tell apart an unfinished upload from one that never existed.
        try:
            store.service.list_parts(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                UploadId=multipart_id,
                MaxParts=0,
            )
        except S3ServiceError as err:
            if err.code == "NoSuchUpload":
                raise NotFoundError() from err
            raise
        raise HTTPError("cannot stream non-finished upload", HTTPStatus.BAD_REQUEST)

    def terminate(self) -> None:
        """Abort the multipart upload and delete the content, part and info objects."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def abort() -> list[BaseException]:
            try:
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                )
            except Exception as err:
                if not is_s3_error(err, "NoSuchUpload"):
                    return [err]
            return []

        def delete() -> list[BaseException]:
            try:
                response = store.service.delete_objects(
                    Bucket=store.bucket,
                    Delete={
                        "Objects": [
                            {"Key": store.key_with_prefix(upload_id)},
                            {"Key": store.metadata_key_with_prefix(upload_id + ".part")},
                            {"Key": store.metadata_key_with_prefix(upload_id + ".info")},
                        ],
                        "Quiet": True,
                    },
                )
            except Exception as err:
                return [err]
            return [
                StoreError(
                    f"AWS S3 Error ({item['Code']}) for object {item['Key']}: {item['Message']}"
                )
                for item in (response or {}).get("Errors") or []
                if item["Code"] != "NoSuchKey"
            ]

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(abort), pool.submit(delete)]
            errors = [error for future in futures for error in future.result()]

        if errors:
            raise MultiError(errors)

    def finish_upload(self) -> None:
        """Complete the multipart upload from all uploaded parts."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        parts = store.list_all_parts(self.id)
        if not parts:
            # S3 needs at least one part, so an empty upload gets an empty part.
            response = store.service.upload_part(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                UploadId=multipart_id,
                PartNumber=1,
                Body=b"",
            )
            parts = [{"ETag": (response or {}).get("ETag"), "PartNumber": 1}]

        store.service.complete_multipart_upload(
            Bucket=store.bucket,
            Key=store.key_with_prefix(upload_id),
            UploadId=multipart_id,
            MultipartUpload={
                "Parts": [
                    {"ETag": part.get("ETag"), "PartNumber": part.get("PartNumber")}
                    for part in parts
                ]
            },
        )

    def concat_uploads(self, partial_uploads: Sequence["S3Upload"]) -> None:
        """Build this upload from the content of the finished partial uploads."""
        has_small_part = any(
            partial.get_info().size < self.store.min_part_size for partial in partial_uploads
        )
        # Parts below the minimum size cannot be copied into a multipart
        # upload, so the data is then downloaded and concatenated locally.
        if has_small_part:
            self._concat_using_download(partial_uploads)
        else:
            self._concat_using_multipart(partial_uploads)

    def _concat_using_download(self, partial_uploads: Sequence["S3Upload"]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=_CONCAT_TEMP_PREFIX,
            dir=store.temporary_directory or None,
            delete=False,
        )
        try:
            for partial in partial_uploads:
                partial_id, _ = split_ids(partial.id)
                obj = store.service.get_object(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(partial_id),
                )
                body = obj["Body"]
                try:
                    shutil.copyfileobj(body, file)
                finally:
                    _close_body(body)

            file.flush()
            file.seek(0)
            store.service.put_object(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                Body=file,
            )
        finally:
            clean_up_temp_file(file)

        def abort() -> None:
            # The outcome does not change the result, so failures are ignored.
            try:
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                )
            except Exception:
                pass

        threading.Thread(target=abort, daemon=True).start()

    def _concat_using_multipart(self, partial_uploads: Sequence["S3Upload"]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def copy_part(part_number: int, partial_id: str) -> Optional[BaseException]:
            try:
                store.service.upload_part_copy(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                    PartNumber=part_number,
                    CopySource=f"{store.bucket}/{store.key_with_prefix(partial_id)}",
                )
            except Exception as err:
                return err
            return None

        partial_ids = [split_ids(partial.id)[0] for partial in partial_uploads]
        if partial_ids:
            with ThreadPoolExecutor(max_workers=len(partial_ids)) as pool:
                futures = [
                    pool.submit(copy_part, number, partial_id)
                    for number, partial_id in enumerate(partial_ids, start=1)
                ]
                errors = [f.result() for f in futures if f.result() is not None]
            if errors:
                raise MultiError(errors)

        self.finish_upload()

    def declare_length(self, length: int) -> None:
        """Set the size of an upload created with a deferred length."""
        info = self.get_info()
        info.size = length
        info.size_is_deferred = False
        self._write_info(info)