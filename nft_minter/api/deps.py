"""FastAPI dependencies for NFT Minter API."""

from fastapi import Depends

from nft_minter.services.chain import ChainService, create_chain_service
from nft_minter.services.database import DatabaseService, create_database_service
from nft_minter.services.pipeline import UploadPipeline, create_upload_pipeline


def get_database_service_dep() -> DatabaseService:
    """Dependency for database service."""
    return create_database_service()


def get_chain_service_dep() -> ChainService:
    """Dependency for chain service."""
    return create_chain_service()


def get_upload_pipeline_dep(
    db: DatabaseService = Depends(get_database_service_dep),
) -> UploadPipeline:
    """Dependency for the full pin-and-mint pipeline."""
    return create_upload_pipeline(store=db)


def get_pin_pipeline_dep(
    db: DatabaseService = Depends(get_database_service_dep),
) -> UploadPipeline:
    """Dependency for the pin-only pipeline (no chain access)."""
    return create_upload_pipeline(store=db, with_chain=False)
