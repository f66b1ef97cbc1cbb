# tusstore

Storage pieces for servers that speak the tus resumable upload protocol:

- `tusstore.s3store.S3Store` keeps uploads in an S3-compatible bucket. Each upload is an
  S3 multipart upload, so a transfer can resume where it stopped.
- `tusstore.memorylocker.MemoryLocker` gives each upload an exclusive in-process lock.

## Installation

```
pip install .
```

To run the test suite, install the test extra and run pytest:

```
pip install ".[test]"
pytest
```

## What this package does not do

It has no HTTP server and does not handle tus requests itself. Your server code calls
the store and the locker. It also has no S3 client of its own. You pass in a service
object that makes the S3 calls (see below).

## The S3 service object

`S3Store` calls the service object with keyword arguments named as in the S3 REST API
(`Bucket`, `Key`, `UploadId`, `PartNumber`, `Body`, ...). The object must provide:

- `create_multipart_upload`, which returns a mapping with `UploadId`
- `upload_part`, which returns a mapping with `ETag`
- `upload_part_copy`
- `complete_multipart_upload`
- `abort_multipart_upload`
- `list_parts`, which returns a mapping with `Parts`. When results are paginated, it also
  returns `IsTruncated` and `NextPartNumberMarker`.
- `get_object`, which returns a mapping with `Body` (a readable binary stream) and
  optionally `ContentLength`
- `put_object`
- `delete_object`
- `delete_objects`, which returns a mapping that may hold `Errors`

The service must report backend failures by raising `tusstore.errors.S3ServiceError`
with the S3 error code (for example `"NoSuchKey"` or `"NoSuchUpload"`). The store uses
these codes to recognise missing objects and finished uploads.

## Storing uploads in S3

```python
from tusstore.fileinfo import FileInfo
from tusstore.s3store import S3Store

store = S3Store("uploads.example.com", service)

upload = store.new_upload(FileInfo(size=1024, meta_data={"filename": "report.pdf"}))
info = upload.get_info()

with open("report.pdf", "rb") as src:
    written = upload.write_chunk(info.offset, src)

upload.finish_upload()
```

If `FileInfo.id` is empty, `new_upload` picks a random id. The upload's full id is
`"<upload id>+<multipart id>"`. The metadata sent to S3 has every character that is not
allowed in an HTTP header replaced by `?`. The `.info` object keeps the original values.

An upload is made of several objects in the bucket:

- `<id>.info`, a JSON object that holds the `FileInfo` (see `FileInfo.to_json` and
  `FileInfo.from_json`)
- a multipart upload that gets one part for each piece of at least `min_part_size`
  bytes, and a smaller one only for the last piece of the upload
- `<id>.part`, which holds trailing bytes that are too small to be a part yet. They are
  put in front of the next chunk.

### Operations on an upload

- `get_upload(id)` returns a handle for an existing upload without fetching anything.
- `get_info()` reads the `.info` object once and caches it. The offset is the sum of the
  uploaded parts plus any `.part` object. If the multipart upload no longer exists, the
  offset equals the size.
- `write_chunk(offset, src)` returns the number of bytes it accepted.
- `get_reader()` streams a finished upload. It raises `HTTPError` (400) when the upload is
  not finished, and `NotFoundError` when the upload does not exist.
- `declare_length(n)` sets the size of an upload that was created with
  `size_is_deferred=True`.
- `concat_uploads([...])` joins finished partial uploads into this one. It copies them
  as multipart parts. If any of them is smaller than `min_part_size`, it downloads them,
  joins them on disk and uploads the result.
- `terminate()` aborts the multipart upload and deletes the content, `.part` and `.info`
  objects.
- `finish_upload()` completes the multipart upload. An empty upload gets a single empty
  part.

### Settings

`S3Store` is a dataclass. Its fields after `bucket` and `service` are:

- `object_prefix`: put in front of every content key
- `metadata_object_prefix`: put in front of `.info` and `.part` keys. It falls back to
  `object_prefix`.
- `min_part_size` (5 MiB), `preferred_part_size` (50 MiB) and `max_part_size` (5 GiB)
- `max_multipart_parts` (10000) and `max_object_size` (5 TiB)
- `max_buffered_parts` (20): parts that may wait on disk while another part is sent
- `temporary_directory`: where the temporary files go. Empty means the system default.
- `disable_content_hashes`

Incoming data is cut into temporary files (`tusstore.part_producer.PartProducer`) before
each part is sent. The part size comes from `calc_optimal_part_size`, so that the whole
upload fits within `max_multipart_parts` parts. It raises `StoreError` if that would
need parts larger than `max_part_size`. `new_upload` raises `StoreError` for a size above
`max_object_size`.

When `disable_content_hashes` is true, the service must also provide
`generate_presigned_url("upload_part", Params=..., ExpiresIn=...)`. The part is then sent
with an HTTP `PUT` to that URL using `urllib`.

## Errors

All exceptions in `tusstore.errors` derive from `StoreError`:

- `HTTPError`: carries `status_code`.
- `NotFoundError` (404): the upload does not exist.
- `FileLockedError` (423): the lock is already held.
- `MultiError`: several S3 calls failed together. The individual errors are in `.errors`.
- `S3ServiceError`: an error reported by the service. Its code is in `.code`.

## Locking

```python
from tusstore.errors import FileLockedError
from tusstore.memorylocker import MemoryLocker

locker = MemoryLocker()
lock = locker.new_lock("upload-id")

with lock:
    ...  # the upload is locked here
```

Calling `lock()` on an id that is already locked raises `FileLockedError`, whichever lock
object holds it. Calling `unlock()` on an id that is not locked does nothing. Locks last
only as long as the `MemoryLocker` object does.