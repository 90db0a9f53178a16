import io

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from coursestream.aws_config import AWSConfig
from coursestream.config import Settings
from coursestream.errors import StorageError
from coursestream.publishing import LocalPublisher, S3Publisher, build_publisher
from coursestream.s3_service import S3Service, guess_content_type


def ssm_client():
    return boto3.client("ssm", region_name="ap-southeast-2",
                        aws_access_key_id="testing", aws_secret_access_key="testing")


def test_ssm_parameters_override_settings():
    client = ssm_client()
    settings = Settings(ssm_prefix="/coursestream/prod/")
    with Stubber(client) as stubber:
        stubber.add_response("get_parameter", {"Parameter": {"Value": "prod-bucket"}},
                             {"Name": "/coursestream/prod/s3-bucket", "WithDecryption": True})
        stubber.add_client_error("get_parameter", service_error_code="ParameterNotFound",
                                 expected_params={"Name": "/coursestream/prod/dynamodb-table",
                                                  "WithDecryption": True})
        stubber.add_response("get_parameter", {"Parameter": {"Value": "https://cdn.example.com/"}},
                             {"Name": "/coursestream/prod/cdn-base-url", "WithDecryption": True})

        AWSConfig(ssm_client=client).apply_to(settings)
        stubber.assert_no_pending_responses()

    assert settings.s3_bucket == "prod-bucket"
    assert settings.dynamodb_table == "coursestream-state"
    assert settings.cdn_base_url == "https://cdn.example.com"


def test_ssm_access_denied_falls_back_to_default():
    client = ssm_client()
    with Stubber(client) as stubber:
        stubber.add_client_error("get_parameter", service_error_code="AccessDeniedException")
        assert AWSConfig(ssm_client=client).get_ssm_parameter("/x", "fallback") == "fallback"


class FakeS3Client:
    def __init__(self, keys=(), fail=False):
        self.uploads = []
        self.deleted = []
        self.keys = list(keys)
        self.fail = fail

    def upload_fileobj(self, file_obj, bucket, key, ExtraArgs=None):
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "nope"}}, "PutObject")
        self.uploads.append((bucket, key, ExtraArgs, file_obj.read()))

    def get_paginator(self, name):
        client = self

        class Paginator:
            def paginate(self, Bucket, Prefix):
                matching = [{"Key": k} for k in client.keys if k.startswith(Prefix)]
                # two pages to exercise pagination
                yield {"Contents": matching[:1]}
                yield {"Contents": matching[1:]}

        return Paginator()

    def delete_objects(self, Bucket, Delete):
        self.deleted.extend(obj["Key"] for obj in Delete["Objects"])


def test_guess_content_type():
    assert guess_content_type("a/720p/playlist.m3u8") == "application/vnd.apple.mpegurl"
    assert guess_content_type("a/720p/segment_000.ts") == "video/mp2t"
    assert guess_content_type("a/poster.jpg") == "image/jpeg"
    assert guess_content_type("a/blob") == "application/octet-stream"


def test_upload_file_encrypts_and_sets_type():
    client = FakeS3Client()
    service = S3Service("bucket", s3_client=client)
    result = service.upload_file(io.BytesIO(b"#EXTM3U"), "transcoded/a/master.m3u8")

    bucket, key, extra, body = client.uploads[0]
    assert extra == {"ContentType": "application/vnd.apple.mpegurl", "ServerSideEncryption": "AES256"}
    assert body == b"#EXTM3U"
    assert result["url"] == "https://bucket.s3.ap-southeast-2.amazonaws.com/transcoded/a/master.m3u8"


def test_upload_failure_raises_storage_error():
    service = S3Service("bucket", s3_client=FakeS3Client(fail=True))
    with pytest.raises(StorageError):
        service.upload_file(io.BytesIO(b"x"), "k")


def test_s3_publisher_uploads_tree_and_removes_prefix(settings, tmp_path):
    out = tmp_path / "job"
    (out / "720p").mkdir(parents=True)
    (out / "master.m3u8").write_text("#EXTM3U\n")
    (out / "720p" / "playlist.m3u8").write_text("#EXTM3U\n")
    (out / "720p" / "segment_000.ts").write_bytes(b"\x47")

    client = FakeS3Client(keys=["transcoded/asset1/master.m3u8", "transcoded/asset1/720p/playlist.m3u8",
                                "transcoded/asset10/master.m3u8"])
    settings.storage_backend = "s3"
    publisher = build_publisher(settings, S3Service("bucket", s3_client=client))
    assert isinstance(publisher, S3Publisher)

    url = publisher.publish("asset1", str(out))
    assert url == "http://cdn.test/media/videos/asset1"
    assert sorted(key for _, key, _, _ in client.uploads) == [
        "transcoded/asset1/720p/playlist.m3u8",
        "transcoded/asset1/720p/segment_000.ts",
        "transcoded/asset1/master.m3u8",
    ]

    publisher.remove("asset1")
    assert sorted(client.deleted) == ["transcoded/asset1/720p/playlist.m3u8", "transcoded/asset1/master.m3u8"]


def test_local_publisher(settings, tmp_path):
    out = tmp_path / "job"
    out.mkdir()
    (out / "master.m3u8").write_text("#EXTM3U\n")

    publisher = build_publisher(settings)
    assert isinstance(publisher, LocalPublisher)
    assert publisher.publish("asset1", str(out)) == "http://cdn.test/media/videos/asset1"
    target = tmp_path / "public" / "videos" / "asset1" / "master.m3u8"
    assert target.exists()

    publisher.remove("asset1")
    assert not target.exists()
