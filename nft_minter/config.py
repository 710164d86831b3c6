"""Application settings from environment variables."""

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables
load_dotenv()


class Settings(BaseSettings):
    """Application settings from environment."""

    # Pinata
    pinata_jwt: str = ""
    pinata_api_url: str = "https://api.pinata.cloud"

    # Chain
    ethereum_rpc_url: str = ""
    private_key: str = ""
    contract_address: str = ""
    contract_abi_path: str = ""  # empty uses the bundled MyNFT ABI
    chain_id: Optional[int] = None
    mint_amount: int = 1
    mint_recipient: str = ""  # empty mints to the signer
    receipt_timeout_seconds: float = 120.0
    receipt_poll_interval_seconds: float = 2.0

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    upload_status_table: str = "upload_statuses"
    nft_token_table: str = "nft_tokens"

    # Pipeline
    stale_run_seconds: float = 3600.0

    # Status poller
    status_poll_interval_seconds: float = 2.0
    status_poll_timeout_seconds: float = 300.0

    # Configuration
    log_level: str = "INFO"

    model_config = {"env_file": ".env"}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
