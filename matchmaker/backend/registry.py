"""Asset registration gateway client.

Three operations back the game-end protocol: register an identity from its
metadata, issue a license from a registered parent to a holder, and register
a derivative from a child identity and the licenses it holds. Every call is an
external, non-transactional side effect.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from .errors import GatewayError
from .gateway import post_json
from .models import RegisteredIdentity
from .security import content_hash


logger = logging.getLogger(__name__)

CREDENTIAL_HEADER = "X-Caller-Credential"


class AssetRegistry(Protocol):
    async def register_identity(self, metadata: dict[str, Any]) -> RegisteredIdentity:
        """Register a new identity and return its id plus transaction reference."""

    async def issue_license(self, caller_credential: str, issuer_identity_id: str, holder_identity_id: str) -> str:
        """Issue one license from ``issuer`` to ``holder`` and return its id."""

    async def register_derivative(self, caller_credential: str, child_identity_id: str, license_ids: list[str]) -> str:
        """Bind ``child`` to its parents through ``license_ids``; return a confirmation."""


def _fingerprint(document: dict[str, Any]) -> str:
    return "0x" + content_hash(json.dumps(document, sort_keys=True).encode("utf-8"))


def build_identity_metadata(persona: dict[str, Any], image_url: str | None = None) -> dict[str, Any]:
    """Wrap a generated persona into identity and token metadata documents."""
    name = str(persona.get("name", ""))
    ip_metadata = {
        "title": name,
        "description": persona.get("system") or persona.get("bio") or "",
        "ipType": "character",
        "attributes": [{"key": "Origin", "value": "round-table derivation"}],
    }
    nft_metadata = {
        "description": f"NFT representing ownership of {name}",
        "image": image_url or "",
        **persona,
    }
    return {
        "ipMetadata": ip_metadata,
        "ipMetadataHash": _fingerprint(ip_metadata),
        "nftMetadata": nft_metadata,
        "nftMetadataHash": _fingerprint(nft_metadata),
    }


class HttpAssetRegistry:
    def __init__(self, base_url: str, timeout: float = 120.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, body: dict[str, Any], credential: str | None = None) -> dict[str, Any]:
        headers = {CREDENTIAL_HEADER: credential} if credential else None
        payload = await post_json(
            f"{self.base_url}/{path}",
            body,
            timeout=self.timeout,
            transport=self._transport,
            headers=headers,
            service="asset registry",
        )
        if not isinstance(payload, dict):
            raise GatewayError("Unexpected response format from asset registry")
        return payload

    async def register_identity(self, metadata: dict[str, Any]) -> RegisteredIdentity:
        payload = await self._post("identities", metadata)
        identity_id = payload.get("ipId")
        tx_ref = payload.get("txHash")
        if not identity_id or not tx_ref:
            raise GatewayError("Asset registry returned no identity id")
        logger.info("registered identity %s tx=%s", identity_id, tx_ref)
        return RegisteredIdentity(identity_id=str(identity_id), tx_ref=str(tx_ref))

    async def issue_license(self, caller_credential: str, issuer_identity_id: str, holder_identity_id: str) -> str:
        payload = await self._post(
            "licenses",
            {"licensorIpId": issuer_identity_id, "receiverIpId": holder_identity_id, "amount": 1},
            credential=caller_credential,
        )
        license_ids = payload.get("licenseTokenIds") or []
        if not license_ids:
            raise GatewayError(f"Asset registry issued no license for {issuer_identity_id}")
        logger.info("license %s issued from %s to %s", license_ids[0], issuer_identity_id, holder_identity_id)
        return str(license_ids[0])

    async def register_derivative(self, caller_credential: str, child_identity_id: str, license_ids: list[str]) -> str:
        payload = await self._post(
            "derivatives",
            {"childIpId": child_identity_id, "licenseTokenIds": license_ids},
            credential=caller_credential,
        )
        confirmation = payload.get("txHash")
        if not confirmation:
            raise GatewayError("Asset registry returned no derivative confirmation")
        return str(confirmation)
