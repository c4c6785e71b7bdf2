import hashlib
import json

import httpx
import pytest

from matchmaker.backend.errors import GatewayError
from matchmaker.backend.registry import CREDENTIAL_HEADER, HttpAssetRegistry, build_identity_metadata


def test_build_identity_metadata_hashes_both_documents() -> None:
    persona = {"name": "Junior", "system": "A curious child", "bio": ["likes maps"]}

    metadata = build_identity_metadata(persona, image_url="https://img.local/junior.png")

    ip_metadata = metadata["ipMetadata"]
    assert ip_metadata["title"] == "Junior"
    assert ip_metadata["description"] == "A curious child"
    assert ip_metadata["ipType"] == "character"
    expected = hashlib.sha256(json.dumps(ip_metadata, sort_keys=True).encode("utf-8")).hexdigest()
    assert metadata["ipMetadataHash"] == "0x" + expected
    assert metadata["nftMetadata"]["image"] == "https://img.local/junior.png"
    assert metadata["nftMetadata"]["bio"] == ["likes maps"]
    assert metadata["nftMetadataHash"].startswith("0x")
    assert metadata["nftMetadataHash"] != metadata["ipMetadataHash"]


def test_build_identity_metadata_falls_back_to_bio() -> None:
    metadata = build_identity_metadata({"name": "Junior", "bio": "Loves puzzles"})

    assert metadata["ipMetadata"]["description"] == "Loves puzzles"


class _Recorder:
    def __init__(self, responses: dict[str, httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []
        self._responses = responses

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responses[request.url.path]


def _registry(recorder: _Recorder) -> HttpAssetRegistry:
    return HttpAssetRegistry("http://registry.local", transport=httpx.MockTransport(recorder))


@pytest.mark.asyncio
async def test_register_identity_returns_id_and_transaction() -> None:
    recorder = _Recorder({"/identities": httpx.Response(200, json={"ipId": "ip-child", "txHash": "0xabc"})})

    registered = await _registry(recorder).register_identity(build_identity_metadata({"name": "Junior"}))

    assert (registered.identity_id, registered.tx_ref) == ("ip-child", "0xabc")
    assert CREDENTIAL_HEADER not in recorder.requests[0].headers


@pytest.mark.asyncio
async def test_issue_license_sends_caller_credential() -> None:
    recorder = _Recorder({"/licenses": httpx.Response(200, json={"licenseTokenIds": [17, 18]})})

    license_id = await _registry(recorder).issue_license("key-host", "ip-host", "ip-child")

    request = recorder.requests[0]
    assert license_id == "17"
    assert request.headers[CREDENTIAL_HEADER] == "key-host"
    assert json.loads(request.content) == {"licensorIpId": "ip-host", "receiverIpId": "ip-child", "amount": 1}


@pytest.mark.asyncio
async def test_issue_license_without_tokens_is_an_error() -> None:
    recorder = _Recorder({"/licenses": httpx.Response(200, json={"licenseTokenIds": []})})

    with pytest.raises(GatewayError):
        await _registry(recorder).issue_license("key-host", "ip-host", "ip-child")


@pytest.mark.asyncio
async def test_register_derivative_returns_confirmation() -> None:
    recorder = _Recorder({"/derivatives": httpx.Response(200, json={"txHash": "0xdef"})})

    confirmation = await _registry(recorder).register_derivative("key-child", "ip-child", ["17", "21"])

    assert confirmation == "0xdef"
    assert json.loads(recorder.requests[0].content) == {"childIpId": "ip-child", "licenseTokenIds": ["17", "21"]}


@pytest.mark.asyncio
async def test_registry_failures_become_gateway_errors() -> None:
    recorder = _Recorder({"/identities": httpx.Response(500, json={"error": "chain unavailable"})})

    with pytest.raises(GatewayError, match="asset registry returned 500"):
        await _registry(recorder).register_identity({"ipMetadata": {}})
