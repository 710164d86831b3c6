"""Client-side poller that waits for an upload to reach a terminal state."""

import asyncio
import logging
import time
from typing import Optional, Sequence

import httpx

from nft_minter.models.upload_status import ALL_STEPS, UploadStatus
from nft_minter.utils.errors import NFTMinterError, NotFoundError, PollTimeoutError

logger = logging.getLogger(__name__)


class StatusPoller:
    """Polls the status endpoint until every watched step is completed or failed."""

    def __init__(
        self,
        base_url: str,
        interval: float = 2.0,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the StatusPoller.

        Args:
            base_url: API base URL, e.g. ``http://localhost:3000/api``
            interval: Seconds between polls
            timeout: Seconds before giving up
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.interval = interval
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, client: httpx.AsyncClient, upload_status_id: str) -> UploadStatus:
        """
        Read the status record once.

        Raises:
            NotFoundError: If the server has no such record
            NFTMinterError: If the request fails
        """
        try:
            response = await client.get(f"{self.base_url}/status/{upload_status_id}")
        except httpx.HTTPError as e:
            raise NFTMinterError(f"HTTP error while polling {upload_status_id}: {e}")

        if response.status_code == 404:
            raise NotFoundError(f"Upload status not found: {upload_status_id}")
        if response.status_code != 200:
            raise NFTMinterError(
                f"Status endpoint returned {response.status_code}: {response.text}"
            )

        return UploadStatus.model_validate(response.json())

    async def poll(
        self, upload_status_id: str, steps: Sequence[str] = ALL_STEPS
    ) -> UploadStatus:
        """
        Poll until every step in ``steps`` is terminal.

        A successful pin-only upload leaves Mint and Persist pending until
        /register-nft runs, so watch ``PIN_ONLY_STEPS`` for that phase.

        Args:
            upload_status_id: Record to watch
            steps: Steps that must reach completed or failed

        Returns:
            The terminal UploadStatus

        Raises:
            PollTimeoutError: If the deadline passes first
            NotFoundError: If the record does not exist
        """
        deadline = time.monotonic() + self.timeout

        async with httpx.AsyncClient(transport=self._transport) as client:
            while True:
                status = await self.fetch(client, upload_status_id)
                if status.is_terminal(steps):
                    logger.info(f"Upload {upload_status_id} reached a terminal state")
                    return status

                if time.monotonic() + self.interval > deadline:
                    raise PollTimeoutError(
                        f"Upload {upload_status_id} not terminal after {self.timeout}s"
                    )

                logger.debug(f"Upload {upload_status_id} still running; polling again")
                await asyncio.sleep(self.interval)


def create_status_poller(base_url: str) -> StatusPoller:
    """Create a StatusPoller using application settings."""
    from nft_minter.config import get_settings

    settings = get_settings()
    return StatusPoller(
        base_url=base_url,
        interval=settings.status_poll_interval_seconds,
        timeout=settings.status_poll_timeout_seconds,
    )
