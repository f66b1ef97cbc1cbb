import pytest

from tusstore.fileinfo import FileInfo


def test_to_json_matches_info_object_layout():
    info = FileInfo(
        id="uploadId+multipartId",
        size=500,
        meta_data={"foo": "hello", "bar": "menü\r\nhi"},
        storage={"Type": "s3store", "Bucket": "bucket", "Key": "uploadId"},
    )
    expected = (
        r'{"ID":"uploadId+multipartId","Size":500,"SizeIsDeferred":false,"Offset":0,'
        r'"MetaData":{"bar":"menü\r\nhi","foo":"hello"},"IsPartial":false,"IsFinal":false,'
        r'"PartialUploads":null,"Storage":{"Bucket":"bucket","Key":"uploadId","Type":"s3store"}}'
    ).encode("utf-8")
    encoded = info.to_json()
    assert encoded == expected
    assert len(encoded) == 241


def test_to_json_of_empty_upload():
    info = FileInfo(
        id="uploadId+multipartId",
        storage={"Type": "s3store", "Bucket": "bucket", "Key": "uploadId"},
    )
    expected = (
        b'{"ID":"uploadId+multipartId","Size":0,"SizeIsDeferred":false,"Offset":0,'
        b'"MetaData":null,"IsPartial":false,"IsFinal":false,"PartialUploads":null,'
        b'"Storage":{"Bucket":"bucket","Key":"uploadId","Type":"s3store"}}'
    )
    encoded = info.to_json()
    assert encoded == expected
    assert len(encoded) == 208


def test_from_json_reads_fields_and_defaults_missing_ones():
    data = (
        '{"ID":"uploadId+multipartId","Size":500,"Offset":0,"MetaData":{"bar":"menü","foo":"hello"},'
        '"IsPartial":false,"IsFinal":false,"PartialUploads":null,'
        '"Storage":{"Bucket":"bucket","Key":"my/uploaded/files/uploadId","Type":"s3store"}}'
    ).encode("utf-8")
    info = FileInfo.from_json(data)
    assert info.id == "uploadId+multipartId"
    assert info.size == 500
    assert info.size_is_deferred is False
    assert info.meta_data == {"bar": "menü", "foo": "hello"}
    assert info.partial_uploads is None
    assert info.storage["Key"] == "my/uploaded/files/uploadId"


def test_from_json_keeps_null_and_empty_maps_apart():
    with_null = FileInfo.from_json('{"ID":"uploadId","Size":500,"MetaData":null,"Storage":null}')
    with_empty = FileInfo.from_json('{"ID":"uploadId","Size":500,"MetaData":{}}')
    assert with_null.meta_data is None
    assert with_null.storage is None
    assert with_empty.meta_data == {}


def test_round_trip():
    info = FileInfo(
        id="abc+def",
        size=10,
        size_is_deferred=True,
        offset=3,
        meta_data={"name": "Menü.txt"},
        is_partial=True,
        partial_uploads=["a", "b"],
        storage={"Type": "s3store"},
    )
    assert FileInfo.from_json(info.to_json()) == info


def test_html_characters_are_escaped_and_restored():
    info = FileInfo(id="x", meta_data={"title": "<b>&"})
    encoded = info.to_json()
    assert b"<" not in encoded
    assert b"&" not in encoded
    assert b"\\u003cb\\u003e" in encoded
    assert FileInfo.from_json(encoded).meta_data == {"title": "<b>&"}


def test_from_json_rejects_non_object():
    with pytest.raises(ValueError):
        FileInfo.from_json("[1, 2]")


def test_from_json_rejects_invalid_json():
    with pytest.raises(ValueError):
        FileInfo.from_json(b"{not json")