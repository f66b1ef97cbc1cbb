from http import HTTPStatus

import pytest

from tusstore.errors import (
    FileLockedError,
    HTTPError,
    MultiError,
    NotFoundError,
    S3ServiceError,
    StoreError,
)


def test_multi_error_message_lists_each_error():
    err = MultiError([StoreError("AWS S3 Error (hello) for object uploadId: it's me.")])
    assert str(err) == "Multiple errors occurred:\n\tAWS S3 Error (hello) for object uploadId: it's me.\n"


def test_multi_error_keeps_errors_in_order():
    first = ValueError("first")
    second = OSError("second")
    err = MultiError([first, second])
    assert err.errors == [first, second]
    assert str(err) == "Multiple errors occurred:\n\tfirst\n\tsecond\n"


def test_multi_error_without_errors():
    assert str(MultiError([])) == "Multiple errors occurred:\n"


def test_multi_error_is_raisable_as_store_error():
    inner = ValueError("boom")
    err = MultiError([inner])
    with pytest.raises(StoreError) as info:
        raise err
    assert info.value is err
    assert info.value.errors == [inner]
    assert str(info.value) == "Multiple errors occurred:\n\tboom\n"


def test_http_error_carries_message_and_status():
    err = HTTPError("cannot stream non-finished upload", HTTPStatus.BAD_REQUEST)
    assert str(err) == "cannot stream non-finished upload"
    assert err.status_code == HTTPStatus.BAD_REQUEST


def test_not_found_error_status():
    err = NotFoundError()
    assert err.status_code == 404
    assert isinstance(err, HTTPError)


def test_file_locked_error_status():
    err = FileLockedError()
    assert err.status_code == 423
    assert isinstance(err, StoreError)


def test_custom_messages_are_kept():
    assert str(NotFoundError("missing")) == "missing"
    assert str(FileLockedError("busy")) == "busy"


def test_s3_service_error_code_and_message():
    err = S3ServiceError("NoSuchKey", "The specified key does not exist.")
    assert err.code == "NoSuchKey"
    assert err.message == "The specified key does not exist."
    assert "NoSuchKey" in str(err)
    assert "The specified key does not exist." in str(err)