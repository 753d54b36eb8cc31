"""Tests for metadata accessibility checks"""

import httpx
import pytest

from mintguard.services.metadata_checker import NOT_CONTENT_ADDRESSED, MetadataChecker, extract_content_id

CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"
GATEWAYS = [
    "https://gw-one.example.com/ipfs/",
    "https://gw-two.example.com/ipfs",
    "https://gw-three.example.com/ipfs/",
]


def gateway_client(live_hosts):
    requests = []

    def handler(request):
        requests.append((request.method, str(request.url)))
        if request.url.host in live_hosts:
            return httpx.Response(200)
        return httpx.Response(504)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


class TestExtractContentId:
    """Test content identifier parsing"""

    def test_ipfs_scheme(self):
        assert extract_content_id(f"ipfs://{CID}") == CID

    def test_ipfs_scheme_with_path(self):
        assert extract_content_id(f"ipfs://{CID}/metadata.json") == f"{CID}/metadata.json"

    def test_gateway_url(self):
        assert extract_content_id(f"https://ipfs.io/ipfs/{CID}?filename=meta.json") == CID

    def test_plain_https_is_not_content_addressed(self):
        assert extract_content_id("https://example.com/meta.json") is None


class TestMetadataChecker:
    """Test gateway probing"""

    @pytest.mark.asyncio
    async def test_third_gateway_succeeds(self):
        """Test that gateways are tried in order and the first success is reported"""
        client, requests = gateway_client({"gw-three.example.com"})
        checker = MetadataChecker(gateways=GATEWAYS, http_client=client)

        result = await checker.validate(f"ipfs://{CID}")

        assert result.valid
        assert result.accessible_via == f"https://gw-three.example.com/ipfs/{CID}"
        assert len(result.checked_gateways) == 3
        assert result.checked_gateways[1] == f"https://gw-two.example.com/ipfs/{CID}"
        assert [method for method, _ in requests] == ["HEAD", "HEAD", "HEAD"]

    @pytest.mark.asyncio
    async def test_redirect_on_shared_client_is_followed(self):
        """Test that a gateway answering with a redirect counts as accessible"""
        requests = []

        def handler(request):
            requests.append(str(request.url))
            if request.url.host == "gw-one.example.com":
                return httpx.Response(302, headers={"Location": f"https://{CID}.ipfs.example.net/"})
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        checker = MetadataChecker(gateways=GATEWAYS, http_client=client)

        result = await checker.validate(f"ipfs://{CID}")

        assert result.valid
        assert result.accessible_via == f"https://gw-one.example.com/ipfs/{CID}"
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self):
        client, requests = gateway_client({"gw-one.example.com", "gw-three.example.com"})
        checker = MetadataChecker(gateways=GATEWAYS, http_client=client)

        result = await checker.validate(f"ipfs://{CID}")

        assert result.accessible_via.startswith("https://gw-one.example.com")
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_all_gateways_fail(self):
        client, _ = gateway_client(set())
        checker = MetadataChecker(gateways=GATEWAYS, http_client=client)

        result = await checker.validate(f"ipfs://{CID}")

        assert not result.valid
        assert result.accessible_via is None
        assert len(result.checked_gateways) == 3
        assert result.reason == "Metadata not accessible from any gateway"

    @pytest.mark.asyncio
    async def test_network_errors_fall_through(self):
        def handler(request):
            if request.url.host == "gw-one.example.com":
                raise httpx.ConnectTimeout("timed out")
            return httpx.Response(200)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        checker = MetadataChecker(gateways=GATEWAYS, http_client=client)

        result = await checker.validate(f"ipfs://{CID}")

        assert result.valid
        assert result.accessible_via.startswith("https://gw-two.example.com")

    @pytest.mark.asyncio
    async def test_non_ipfs_uri_makes_no_request(self):
        """Test that a URI without a content identifier is rejected without network calls"""
        client, requests = gateway_client({"gw-one.example.com"})
        checker = MetadataChecker(gateways=GATEWAYS, http_client=client)

        result = await checker.validate("https://example.com/meta.json")

        assert not result.valid
        assert result.reason == NOT_CONTENT_ADDRESSED
        assert requests == []
