"""Pydantic data models for NFT Minter."""

from nft_minter.models.token import NFTMetadata, NFTToken
from nft_minter.models.upload_status import (
    ALL_STEPS,
    IMAGE_STEP,
    METADATA_STEP,
    MINT_STEP,
    PERSIST_STEP,
    PIN_ONLY_STEPS,
    TERMINAL_STATUSES,
    StepStatus,
    UploadStatus,
)

__all__ = [
    "NFTMetadata",
    "NFTToken",
    "UploadStatus",
    "StepStatus",
    "TERMINAL_STATUSES",
    "IMAGE_STEP",
    "METADATA_STEP",
    "MINT_STEP",
    "PERSIST_STEP",
    "ALL_STEPS",
    "PIN_ONLY_STEPS",
]
