"""Pytest fixtures for NFT Minter tests."""

import pytest

from tests.fakes import (
    FakeChainService,
    FakePinataService,
    MockSupabaseClient,
    RecordingDatabaseService,
)


@pytest.fixture
def supabase_client() -> MockSupabaseClient:
    """In-memory Supabase client."""
    return MockSupabaseClient()


@pytest.fixture
def store(supabase_client: MockSupabaseClient) -> RecordingDatabaseService:
    """Status store backed by the in-memory client."""
    return RecordingDatabaseService(supabase_client)


@pytest.fixture
def pinning() -> FakePinataService:
    """Pinning service returning the scenario content ids."""
    return FakePinataService(file_cid="ipfs://Qm1", json_cid="ipfs://Qm2")


@pytest.fixture
def chain() -> FakeChainService:
    """Chain service minting token 42."""
    return FakeChainService(token_id="42")


@pytest.fixture
def sample_submission() -> dict:
    """Sample upload submission."""
    return {
        "image": b"\x89PNG\r\n\x1a\nfake-image-bytes",
        "filename": "img.png",
        "content_type": "image/png",
        "name": "Art",
        "description": "desc",
    }
