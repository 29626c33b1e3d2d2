"""Avatar storage tests (S3 client replaced by a recording fake)."""
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from business.avatar_storage import MAX_AVATAR_SIZE_BYTES, AvatarStore, avatar_extension
from database.exceptions import UploadFailed


class FakeS3:

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def put_object(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append(kwargs)
        return {"ETag": '"abc"'}


def make_store(client, public_base_url="https://cdn.example.com/avatars"):
    return AvatarStore(client=client, bucket="avatars",
                       public_base_url=public_base_url, clock=lambda: 1700000000.123)


class TestAvatarExtension:

    @pytest.mark.parametrize("filename,expected", [
        ("photo.PNG", "png"),
        ("me.profile.jpeg", "jpeg"),
        ("noext", "bin"),
        ("weird.j?g", "jg"),
    ])
    def test_extension(self, filename, expected):
        assert avatar_extension(filename) == expected


class TestAvatarStore:

    def test_upload_returns_public_url(self):
        client = FakeS3()
        url = make_store(client).upload(7, "face.png", b"\x89PNG", "image/png")

        assert url == "https://cdn.example.com/avatars/7/1700000000123.png"
        call = client.calls[0]
        assert call["Bucket"] == "avatars"
        assert call["Key"] == "7/1700000000123.png"
        assert call["Body"] == b"\x89PNG"
        assert call["ContentType"] == "image/png"

    def test_public_url_falls_back_to_endpoint(self, monkeypatch):
        """Without a public base URL the S3 endpoint is used."""
        from config.settings import settings
        monkeypatch.setattr(settings, "storage_endpoint_url", "https://s3.example.com/")
        store = make_store(FakeS3(), public_base_url="")
        assert store.public_url("1/2.png") == "https://s3.example.com/avatars/1/2.png"

    def test_rejects_empty_file(self):
        client = FakeS3()
        with pytest.raises(UploadFailed):
            make_store(client).upload(1, "a.png", b"", "image/png")
        assert client.calls == []

    def test_rejects_oversized_file(self):
        with pytest.raises(UploadFailed):
            make_store(FakeS3()).upload(
                1, "a.png", b"x" * (MAX_AVATAR_SIZE_BYTES + 1), "image/png"
            )

    def test_rejects_non_image(self):
        with pytest.raises(UploadFailed):
            make_store(FakeS3()).upload(1, "a.pdf", b"%PDF", "application/pdf")

    def test_client_error_becomes_upload_failed(self):
        """S3 client errors surface as UploadFailed."""
        error = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}},
            "PutObject",
        )
        with pytest.raises(UploadFailed):
            make_store(FakeS3(error)).upload(1, "a.png", b"data", "image/png")

    def test_connection_error_becomes_upload_failed(self):
        error = EndpointConnectionError(endpoint_url="https://s3.example.com")
        with pytest.raises(UploadFailed):
            make_store(FakeS3(error)).upload(1, "a.png", b"data", "image/png")
