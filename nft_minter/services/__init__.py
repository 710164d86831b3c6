"""Service layer for NFT Minter."""

from nft_minter.services.chain import ChainService, create_chain_service, load_contract_abi
from nft_minter.services.database import DatabaseService, create_database_service
from nft_minter.services.pinning import PinataService, create_pinning_service
from nft_minter.services.pipeline import (
    UploadJob,
    UploadPipeline,
    create_upload_pipeline,
    recover_stale_runs,
)
from nft_minter.services.poller import StatusPoller, create_status_poller

__all__ = [
    "ChainService",
    "create_chain_service",
    "load_contract_abi",
    "DatabaseService",
    "create_database_service",
    "PinataService",
    "create_pinning_service",
    "UploadJob",
    "UploadPipeline",
    "create_upload_pipeline",
    "recover_stale_runs",
    "StatusPoller",
    "create_status_poller",
]
