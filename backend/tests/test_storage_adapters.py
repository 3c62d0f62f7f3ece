"""Tests for the R2 and legacy blob adapters and the dispatching DocumentStorage."""

import io
import json

import boto3
import httpx
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from app.middleware.exceptions import StorageConfigurationError
from app.services import accounting
from app.storage import adapters
from app.storage.adapters import DocumentStorage, LegacyBlobStorage, R2Storage
from app.storage.references import LegacyUrl, ReferencePatterns, TenantKey

BUCKET = "solar-documents"
KEY = "ws/cust/aadhaar/1700000000000_card.pdf"
LEGACY = "https://abc.public.blob.vercel-storage.com/cust_aadhaar_1_card.pdf"

PATTERNS = ReferencePatterns(
    object_storage_host="r2.cloudflarestorage.com",
    legacy_blob_host="blob.vercel-storage.com",
    bucket=BUCKET,
)


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        endpoint_url="https://acct.r2.cloudflarestorage.com",
        aws_access_key_id="test",
        aws_secret_access_key="test",
        region_name="auto",
    )


@pytest.fixture
def stubber(s3_client):
    with Stubber(s3_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def r2(s3_client):
    return R2Storage(client=s3_client, bucket=BUCKET)


def tenant(key: str = KEY) -> TenantKey:
    return TenantKey(key=key, raw=key)


@pytest.mark.asyncio
class TestR2Storage:
    async def test_head(self, r2, stubber):
        stubber.add_response("head_object", {"ContentLength": 2048}, {"Bucket": BUCKET, "Key": KEY})
        assert await r2.head(tenant()) == 2048

    async def test_head_missing(self, r2, stubber):
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        assert await r2.head(tenant()) is None

    async def test_get(self, r2, stubber):
        body = b"%PDF-1.7"
        stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(body), len(body)), "ContentType": "application/pdf"},
            {"Bucket": BUCKET, "Key": KEY},
        )
        stored = await r2.get(tenant())
        assert stored.content == body
        assert stored.filename == "card.pdf"
        assert stored.content_type == "application/pdf"

    async def test_get_missing(self, r2, stubber):
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        assert await r2.get(tenant()) is None

    async def test_delete(self, r2, stubber):
        stubber.add_response("head_object", {"ContentLength": 4}, {"Bucket": BUCKET, "Key": KEY})
        stubber.add_response("delete_object", {}, {"Bucket": BUCKET, "Key": KEY})
        assert await r2.delete(tenant()) is True

    async def test_delete_missing_key(self, r2, stubber):
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        assert await r2.delete(tenant()) is False

    async def test_delete_after_inconclusive_head(self, r2, stubber):
        stubber.add_client_error("head_object", service_error_code="403", http_status_code=403)
        stubber.add_response("delete_object", {}, {"Bucket": BUCKET, "Key": KEY})
        assert await r2.delete(tenant()) is True

    async def test_delete_denied(self, r2, stubber):
        stubber.add_response("head_object", {"ContentLength": 4}, {"Bucket": BUCKET, "Key": KEY})
        stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)
        assert await r2.delete(tenant()) is False

    async def test_list_keys(self, r2, stubber):
        stubber.add_response(
            "list_objects_v2",
            {
                "Contents": [{"Key": "ws/c1/a/1_a.pdf", "Size": 10}, {"Key": "ws/c2/b/2_b.pdf", "Size": 5}],
                "IsTruncated": False,
            },
            {"Bucket": BUCKET, "Prefix": "ws/"},
        )
        objects = await r2.list_keys("ws/")
        assert [(o.key, o.size) for o in objects] == [("ws/c1/a/1_a.pdf", 10), ("ws/c2/b/2_b.pdf", 5)]


def test_missing_credentials(monkeypatch):
    monkeypatch.setattr(adapters.settings, "r2_endpoint", "")
    with pytest.raises(StorageConfigurationError):
        adapters.create_r2_client()


def legacy_storage(handler, token="rw-token") -> LegacyBlobStorage:
    return LegacyBlobStorage(
        token=token,
        api_url="https://blob.vercel-storage.com",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
class TestLegacyBlobStorage:
    async def test_head_and_get(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == LEGACY
            if request.method == "HEAD":
                return httpx.Response(200, headers={"content-length": "7"})
            return httpx.Response(200, content=b"content", headers={"content-type": "application/pdf"})

        storage = legacy_storage(handler)
        assert await storage.head(LegacyUrl(LEGACY)) == 7
        stored = await storage.get(LegacyUrl(LEGACY))
        assert stored.content == b"content"
        assert stored.filename == "cust_aadhaar_1_card.pdf"

    async def test_missing(self):
        storage = legacy_storage(lambda request: httpx.Response(404))
        assert await storage.head(LegacyUrl(LEGACY)) is None
        assert await storage.get(LegacyUrl(LEGACY)) is None

    async def test_delete_calls_blob_api(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        assert await legacy_storage(handler).delete(LegacyUrl(LEGACY)) is True
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://blob.vercel-storage.com/delete"
        assert request.headers["authorization"] == "Bearer rw-token"
        assert json.loads(request.content) == {"urls": [LEGACY]}

    async def test_delete_failure(self):
        storage = legacy_storage(lambda request: httpx.Response(500))
        assert await storage.delete(LegacyUrl(LEGACY)) is False

    async def test_delete_without_token(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert await legacy_storage(handler, token="").delete(LegacyUrl(LEGACY)) is False

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        assert await legacy_storage(handler).get(LegacyUrl(LEGACY)) is None


@pytest.mark.asyncio
class TestDocumentStorage:
    async def test_dispatches_by_reference_kind(self, r2, stubber):
        stubber.add_response("head_object", {"ContentLength": 11}, {"Bucket": BUCKET, "Key": KEY})

        def handler(request):
            return httpx.Response(200, headers={"content-length": "22"})

        storage = DocumentStorage(r2=r2, legacy=legacy_storage(handler), patterns=PATTERNS)
        assert await storage.head_object(KEY) == 11
        assert await storage.head_object(LEGACY) == 22

    async def test_presigned_url_uses_bucket_key(self, r2, stubber):
        stubber.add_response("head_object", {"ContentLength": 4}, {"Bucket": BUCKET, "Key": KEY})
        stubber.add_response("delete_object", {}, {"Bucket": BUCKET, "Key": KEY})
        url = f"https://acct.r2.cloudflarestorage.com/{BUCKET}/{KEY}?X-Amz-Expires=3600"

        storage = DocumentStorage(r2=r2, legacy=legacy_storage(lambda r: httpx.Response(500)), patterns=PATTERNS)
        assert await storage.delete_object(url) is True

    async def test_delete_all_counts_missing_objects_as_failed(self, r2, stubber):
        keys = [f"ws/cust/bill/{n}_bill.pdf" for n in (1, 2, 3)]
        for key in keys[:2]:
            params = {"Bucket": BUCKET, "Key": key}
            stubber.add_response("head_object", {"ContentLength": 10}, params)
            stubber.add_response("head_object", {"ContentLength": 10}, params)
            stubber.add_response("delete_object", {}, params)
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)
        stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)

        storage = DocumentStorage(r2=r2, legacy=legacy_storage(lambda r: httpx.Response(500)), patterns=PATTERNS)
        report = await accounting.delete_all(storage, keys)

        assert report.deleted_count == 2
        assert report.failed_count == 1
        assert report.total_bytes_freed == 20
        assert report.failed_refs == [keys[2]]
