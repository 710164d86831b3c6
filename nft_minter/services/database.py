"""Database service for Supabase operations."""

import logging
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from nft_minter.models.token import NFTToken
from nft_minter.models.upload_status import ALL_STEPS, UploadStatus
from nft_minter.utils.errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)

STEP_STATUSES = frozenset({"pending", "in_progress", "completed", "failed"})
UPDATABLE_FIELDS = frozenset(ALL_STEPS) | {"metadata_hash", "token_id"}


class DatabaseService:
    """Service for Supabase database operations."""

    def __init__(
        self,
        supabase_client: Any,
        upload_status_table: str = "upload_statuses",
        nft_token_table: str = "nft_tokens",
    ) -> None:
        """
        Initialize the DatabaseService.

        Args:
            supabase_client: Supabase client instance
            upload_status_table: Table holding one row per upload attempt
            nft_token_table: Table holding minted token records
        """
        self.supabase = supabase_client
        self.upload_status_table = upload_status_table
        self.nft_token_table = nft_token_table

    # ==================== UPLOAD STATUS CRUD ====================

    async def create_upload_status(self) -> str:
        """
        Create a new upload status record with every step pending.

        Returns:
            The id of the created record

        Raises:
            StoreError: If creation fails
        """
        status = UploadStatus(id=str(uuid4()))

        try:
            result = (
                self.supabase.table(self.upload_status_table)
                .insert(self._status_to_row(status))
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to create upload status: {e}")

        if not result.data:
            raise StoreError("Failed to insert upload status into database")

        logger.info(f"Created upload status {status.id}")
        return status.id

    async def get_upload_status(self, upload_status_id: str) -> Optional[UploadStatus]:
        """
        Retrieve an upload status by ID.

        Args:
            upload_status_id: The record ID to retrieve

        Returns:
            UploadStatus if found, None otherwise

        Raises:
            StoreError: If the query fails
        """
        try:
            result = (
                self.supabase.table(self.upload_status_table)
                .select("*")
                .eq("id", upload_status_id)
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to get upload status {upload_status_id}: {e}")

        if not result.data:
            return None

        return self._row_to_status(result.data[0])

    async def update_upload_status(self, upload_status_id: str, **fields: Any) -> UploadStatus:
        """
        Merge the given fields into an upload status and bump updated_at.

        Args:
            upload_status_id: The record ID to update
            **fields: Step statuses, metadata_hash and/or token_id

        Returns:
            The updated UploadStatus

        Raises:
            NotFoundError: If no record has this ID
            StoreError: If a field is unknown or the update fails
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise StoreError(f"Cannot update fields: {sorted(unknown)}")

        for step in ALL_STEPS:
            if step in fields and fields[step] not in STEP_STATUSES:
                raise StoreError(f"Invalid status for {step}: {fields[step]!r}")

        update_data: dict[str, Any] = dict(fields)
        update_data["updated_at"] = datetime.utcnow().isoformat()

        try:
            result = (
                self.supabase.table(self.upload_status_table)
                .update(update_data)
                .eq("id", upload_status_id)
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to update upload status {upload_status_id}: {e}")

        if not result.data:
            raise NotFoundError(f"Upload status not found: {upload_status_id}")

        return self._row_to_status(result.data[0])

    async def get_stale_upload_statuses(self, before: datetime) -> List[UploadStatus]:
        """
        Retrieve records with a step still in progress and no update since ``before``.

        Args:
            before: Cutoff for updated_at

        Returns:
            List of stale UploadStatus records

        Raises:
            StoreError: If the query fails
        """
        try:
            result = (
                self.supabase.table(self.upload_status_table)
                .select("*")
                .lt("updated_at", before.isoformat())
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to query stale upload statuses: {e}")

        stale = []
        for row in result.data or []:
            status = self._row_to_status(row)
            if any(status.step_status(step) == "in_progress" for step in ALL_STEPS):
                stale.append(status)

        return stale

    # ==================== NFT TOKENS CRUD ====================

    async def create_nft_token(self, token: NFTToken) -> str:
        """
        Create a denormalized token record.

        Args:
            token: NFTToken to persist

        Returns:
            The token_id of the created record

        Raises:
            StoreError: If creation fails
        """
        token_data = {
            "token_id": token.token_id,
            "upload_status_id": token.upload_status_id,
            "metadata_hash": token.metadata_hash,
            "created_at": token.created_at.isoformat(),
        }

        try:
            result = self.supabase.table(self.nft_token_table).insert(token_data).execute()
        except Exception as e:
            raise StoreError(f"Failed to create token {token.token_id}: {e}")

        if not result.data:
            raise StoreError("Failed to insert token into database")

        logger.info(f"Created token record {token.token_id}")
        return token.token_id

    async def get_nft_token(self, token_id: str) -> Optional[NFTToken]:
        """
        Retrieve a token record by token ID.

        Raises:
            StoreError: If the query fails
        """
        try:
            result = (
                self.supabase.table(self.nft_token_table)
                .select("*")
                .eq("token_id", token_id)
                .execute()
            )
        except Exception as e:
            raise StoreError(f"Failed to get token {token_id}: {e}")

        if not result.data:
            return None

        return NFTToken.model_validate(result.data[0])

    # ==================== ROW CONVERSION ====================

    @staticmethod
    def _status_to_row(status: UploadStatus) -> dict[str, Any]:
        row = status.model_dump()
        row["created_at"] = status.created_at.isoformat()
        row["updated_at"] = status.updated_at.isoformat()
        return row

    @staticmethod
    def _row_to_status(row: dict[str, Any]) -> UploadStatus:
        return UploadStatus(
            id=row["id"],
            image_upload_status=row["image_upload_status"],
            metadata_upload_status=row["metadata_upload_status"],
            nft_mint_status=row["nft_mint_status"],
            db_save_status=row["db_save_status"],
            metadata_hash=row.get("metadata_hash"),
            token_id=row.get("token_id"),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


# Factory function for creating DatabaseService with settings
def create_database_service() -> DatabaseService:
    """
    Create a DatabaseService instance using application settings.

    Returns:
        Configured DatabaseService instance
    """
    from supabase import create_client

    from nft_minter.config import get_settings

    settings = get_settings()
    supabase_client = create_client(settings.supabase_url, settings.supabase_key)
    return DatabaseService(
        supabase_client=supabase_client,
        upload_status_table=settings.upload_status_table,
        nft_token_table=settings.nft_token_table,
    )
