"""Upload pipeline: pin image, pin metadata, mint, persist, with per-step status writes."""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from pydantic import BaseModel, Field

from nft_minter.models.token import NFTMetadata, NFTToken
from nft_minter.models.upload_status import (
    ALL_STEPS,
    IMAGE_STEP,
    METADATA_STEP,
    MINT_STEP,
    PERSIST_STEP,
    UploadStatus,
)
from nft_minter.services.chain import ChainService
from nft_minter.services.database import DatabaseService
from nft_minter.services.pinning import PinataService
from nft_minter.utils.errors import NFTMinterError

logger = logging.getLogger(__name__)
T = TypeVar("T")


class UploadJob(BaseModel):
    """Inputs for one pipeline run."""

    upload_status_id: str = Field(min_length=1)
    image: bytes
    filename: str = "upload"
    content_type: str = "application/octet-stream"
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)


class UploadPipeline:
    """Runs the ordered upload steps and records every transition in the store."""

    def __init__(
        self,
        store: DatabaseService,
        pinning: PinataService,
        chain: Optional[ChainService] = None,
        mint_amount: int = 1,
        recipient: Optional[str] = None,
    ) -> None:
        """
        Initialize the UploadPipeline.

        Args:
            store: Status record store
            pinning: Pinning service for image and metadata
            chain: Chain service (required only when the mint step runs)
            mint_amount: Copies minted per upload
            recipient: Mint recipient (defaults to the chain signer)
        """
        self.store = store
        self.pinning = pinning
        self.chain = chain
        self.mint_amount = mint_amount
        self.recipient = recipient

    async def run(self, job: UploadJob, steps: Sequence[str] = ALL_STEPS) -> None:
        """
        Execute the pipeline for one upload.

        Step failures are recorded on the status record and are not raised.
        A failed run can never be resumed, so every not-completed step is
        reconciled to failed, including those outside ``steps``.

        Args:
            job: Per-run inputs
            steps: Leading subset of the full step sequence to run

        Raises:
            ValueError: If ``steps`` is not a prefix of the step sequence, or
                the mint step is requested without a chain service
        """
        steps = tuple(steps)
        if not steps or steps != ALL_STEPS[: len(steps)]:
            raise ValueError(f"Steps must be a prefix of {ALL_STEPS}, got {steps}")
        if MINT_STEP in steps and self.chain is None:
            raise ValueError("Chain service required to run the mint step")

        record_id = job.upload_status_id
        logger.info(f"Starting upload {record_id} ({len(steps)} steps)")

        try:
            image_cid = await self._run_step(
                record_id,
                IMAGE_STEP,
                lambda: self.pinning.pin_file(job.image, job.filename, job.content_type),
            )

            if METADATA_STEP not in steps:
                return
            metadata = NFTMetadata(name=job.name, description=job.description, image=image_cid)
            metadata_cid = await self._run_step(
                record_id,
                METADATA_STEP,
                lambda: self.pinning.pin_json(metadata.model_dump(), name=f"{job.name}.json"),
                result_field="metadata_hash",
            )

            if MINT_STEP not in steps:
                return
            recipient = self.recipient or self.chain.address
            token_id = await self._run_step(
                record_id,
                MINT_STEP,
                lambda: self.chain.mint(recipient, self.mint_amount, metadata_cid),
                result_field="token_id",
            )

            if PERSIST_STEP not in steps:
                return
            token = NFTToken(
                token_id=token_id,
                upload_status_id=record_id,
                metadata_hash=metadata_cid,
            )
            await self._run_step(
                record_id,
                PERSIST_STEP,
                lambda: self.store.create_nft_token(token),
            )

            logger.info(f"Upload {record_id} completed: token {token_id}")

        except NFTMinterError as e:
            logger.error(f"Upload {record_id} failed: {e}")
            await self.reconcile(record_id)
        except Exception as e:
            logger.exception(f"Unexpected error in upload {record_id}: {e}")
            await self.reconcile(record_id)

    async def _run_step(
        self,
        record_id: str,
        step: str,
        action: Callable[[], Awaitable[T]],
        result_field: Optional[str] = None,
    ) -> T:
        """Mark a step in progress, run it, then mark it completed or failed."""
        await self.store.update_upload_status(record_id, **{step: "in_progress"})

        try:
            result = await action()
        except Exception as e:
            logger.error(f"Step {step} failed for upload {record_id}: {e}")
            try:
                await self.store.update_upload_status(record_id, **{step: "failed"})
            except NFTMinterError as write_error:
                logger.error(f"Could not mark {step} failed for upload {record_id}: {write_error}")
            raise

        fields: dict[str, Any] = {step: "completed"}
        if result_field is not None:
            fields[result_field] = result
        try:
            await self.store.update_upload_status(record_id, **fields)
        except NFTMinterError:
            logger.error(
                f"Step {step} produced {result!r} for upload {record_id} "
                f"but its completion was not recorded"
            )
            raise

        logger.info(f"Step {step} completed for upload {record_id}")
        return result

    async def register(
        self,
        record: UploadStatus,
        nonce: Optional[int] = None,
        signature: Optional[str] = None,
    ) -> str:
        """
        Mint a pinned upload through the signature-authorized registration path.

        Runs the Mint and Persist steps for a record whose metadata is pinned.
        Without a caller signature the server reads its own nonce and signs.

        Args:
            record: Status record with a completed metadata step
            nonce: Caller's nonce (given together with ``signature``)
            signature: Caller's hex signature over the registration digest

        Returns:
            The registered token ID

        Raises:
            ChainError: If registration fails (the record is reconciled first)
            StoreError: If a status write fails (the record is reconciled first)
        """
        if self.chain is None:
            raise ValueError("Chain service required to register an NFT")

        record_id = record.id
        metadata_hash = record.metadata_hash

        async def submit() -> str:
            reg_nonce, reg_signature = nonce, signature
            if reg_signature is None:
                reg_nonce = await self.chain.get_nonce(self.chain.address)
                reg_signature = self.chain.sign_registration(metadata_hash, reg_nonce)
            return await self.chain.register_nft(metadata_hash, reg_nonce, reg_signature)

        try:
            token_id = await self._run_step(record_id, MINT_STEP, submit, result_field="token_id")
        except Exception as e:
            logger.error(f"Registration failed for upload {record_id}: {e}")
            await self.reconcile(record_id)
            raise

        token = NFTToken(token_id=token_id, upload_status_id=record_id, metadata_hash=metadata_hash)
        try:
            await self._run_step(
                record_id,
                PERSIST_STEP,
                lambda: self.store.create_nft_token(token),
            )
        except NFTMinterError as e:
            logger.error(f"Token {token_id} registered but not persisted for upload {record_id}: {e}")
            await self.reconcile(record_id)

        logger.info(f"Registered token {token_id} for upload {record_id}")
        return token_id

    async def reconcile(
        self, record_id: str, steps: Sequence[str] = ALL_STEPS
    ) -> Optional[UploadStatus]:
        """
        Mark every not-completed step in ``steps`` failed.

        Completed steps are left untouched.

        Returns:
            The reconciled record, or None if it is missing or the store failed
        """
        try:
            current = await self.store.get_upload_status(record_id)
            if current is None:
                logger.warning(f"Cannot reconcile missing upload {record_id}")
                return None

            updates = current.reconciled(steps)
            if not updates:
                return current

            logger.warning(f"Reconciling upload {record_id}: marking {sorted(updates)} failed")
            return await self.store.update_upload_status(record_id, **updates)

        except NFTMinterError as e:
            logger.error(f"Reconciliation failed for upload {record_id}: {e}")
            return None


async def recover_stale_runs(
    pipeline: UploadPipeline,
    stale_after_seconds: float,
    now: Optional[datetime] = None,
) -> int:
    """
    Reconcile runs left in progress by a crashed process.

    Args:
        pipeline: Pipeline whose store holds the records
        stale_after_seconds: Age of the last update after which a run is abandoned
        now: Current time (defaults to utcnow)

    Returns:
        Number of records reconciled
    """
    cutoff = (now or datetime.utcnow()) - timedelta(seconds=stale_after_seconds)
    stale = await pipeline.store.get_stale_upload_statuses(cutoff)

    recovered = 0
    for status in stale:
        if await pipeline.reconcile(status.id) is not None:
            recovered += 1

    if recovered:
        logger.warning(f"Recovered {recovered} stale upload(s) last updated before {cutoff}")
    return recovered


def create_upload_pipeline(
    store: Optional[DatabaseService] = None,
    with_chain: bool = True,
) -> UploadPipeline:
    """
    Create an UploadPipeline using application settings.

    Args:
        store: Optional store (created from settings when None)
        with_chain: Build a chain service for the mint step

    Returns:
        Configured UploadPipeline instance
    """
    from nft_minter.config import get_settings
    from nft_minter.services.chain import create_chain_service
    from nft_minter.services.database import create_database_service
    from nft_minter.services.pinning import create_pinning_service

    settings = get_settings()
    return UploadPipeline(
        store=store or create_database_service(),
        pinning=create_pinning_service(),
        chain=create_chain_service() if with_chain else None,
        mint_amount=settings.mint_amount,
        recipient=settings.mint_recipient or None,
    )
