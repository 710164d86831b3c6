"""Pinning service for storing images and metadata on IPFS via the Pinata REST API."""

import json
import logging
from typing import Any, Optional

import httpx

from nft_minter.utils.errors import PinataAPIError, PinError

logger = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"


class PinataService:
    """Service for pinning files and JSON documents through Pinata."""

    def __init__(
        self,
        pinata_jwt: str,
        api_url: str = "https://api.pinata.cloud",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the PinataService.

        Args:
            pinata_jwt: JWT for the Pinata API
            api_url: Base URL of the Pinata API
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.jwt = pinata_jwt
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.jwt}"}

    async def pin_file(
        self,
        content: bytes,
        filename: str = "upload",
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Pin a binary file.

        Args:
            content: Raw file bytes
            filename: Name reported to Pinata
            content_type: MIME type of the file

        Returns:
            Content identifier in ``ipfs://<hash>`` form

        Raises:
            PinataAPIError: If Pinata returns an error status
            PinError: If the request fails
        """
        result = await self._post(
            "/pinning/pinFileToIPFS",
            files={"file": (filename, content, content_type)},
            data={"pinataMetadata": json.dumps({"name": filename})},
        )
        content_id = self._content_id(result)
        logger.info(f"Pinned file {filename} ({len(content)} bytes): {content_id}")
        return content_id

    async def pin_json(self, document: dict[str, Any], name: Optional[str] = None) -> str:
        """
        Pin a JSON document.

        Args:
            document: JSON-serializable document
            name: Optional name reported to Pinata

        Returns:
            Content identifier in ``ipfs://<hash>`` form

        Raises:
            PinataAPIError: If Pinata returns an error status
            PinError: If the request fails
        """
        payload: dict[str, Any] = {"pinataContent": document}
        if name:
            payload["pinataMetadata"] = {"name": name}

        result = await self._post("/pinning/pinJSONToIPFS", json=payload)
        content_id = self._content_id(result)
        logger.info(f"Pinned JSON document: {content_id}")
        return content_id

    async def _post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self.api_url}{path}",
                    headers=self._headers,
                    timeout=self.timeout,
                    **kwargs,
                )
        except httpx.HTTPError as e:
            raise PinError(f"HTTP error during pinning: {e}")

        if response.status_code != 200:
            raise PinataAPIError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise PinError(f"Invalid JSON from Pinata: {e}")

    @staticmethod
    def _content_id(result: dict[str, Any]) -> str:
        ipfs_hash = result.get("IpfsHash") if isinstance(result, dict) else None
        if not ipfs_hash:
            raise PinError("No IpfsHash in Pinata response")
        return f"{IPFS_SCHEME}{ipfs_hash}"


def create_pinning_service() -> PinataService:
    """
    Create a PinataService instance using application settings.

    Returns:
        Configured PinataService instance
    """
    from nft_minter.config import get_settings

    settings = get_settings()
    return PinataService(
        pinata_jwt=settings.pinata_jwt,
        api_url=settings.pinata_api_url,
    )
