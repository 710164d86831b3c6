"""Utility modules for NFT Minter."""

from nft_minter.utils.errors import (
    ChainError,
    ChainTimeoutError,
    NFTMinterError,
    NotFoundError,
    PinataAPIError,
    PinError,
    PollTimeoutError,
    StoreError,
    UploadValidationError,
)

__all__ = [
    "NFTMinterError",
    "UploadValidationError",
    "NotFoundError",
    "StoreError",
    "PinError",
    "PinataAPIError",
    "ChainError",
    "ChainTimeoutError",
    "PollTimeoutError",
]
