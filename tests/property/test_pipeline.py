"""Property-based tests for the upload pipeline.

Feature: nft-minter
Steps run in order with a durable write per transition; a failure halts the
run and reconciliation marks every not-completed step failed.
"""

from datetime import datetime, timedelta

import pytest
from hypothesis import given, settings, strategies as st

from nft_minter.models.upload_status import ALL_STEPS, PIN_ONLY_STEPS, UploadStatus
from nft_minter.services.pipeline import UploadJob, UploadPipeline, recover_stale_runs
from nft_minter.utils.errors import ChainError, PinError, StoreError
from tests.fakes import (
    SIGNER_ADDRESS,
    FakeChainService,
    FakePinataService,
    MockSupabaseClient,
    RecordingDatabaseService,
    network_pin_error,
    reverted_mint_error,
)


def make_job(upload_status_id: str, submission: dict) -> UploadJob:
    return UploadJob(upload_status_id=upload_status_id, **submission)


SUBMISSION = {
    "image": b"image-bytes",
    "filename": "img.png",
    "content_type": "image/png",
    "name": "Art",
    "description": "desc",
}


def assert_hash_and_token_invariants(status: UploadStatus) -> None:
    assert (status.metadata_hash is not None) == (status.metadata_upload_status == "completed")
    assert (status.token_id is not None) == (status.nft_mint_status == "completed")


class TestSuccessfulRun:
    """A run with no failures completes every step."""

    @pytest.mark.asyncio
    async def test_full_scenario(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        final = await store.get_upload_status(upload_status_id)
        for step in ALL_STEPS:
            assert final.step_status(step) == "completed"
        assert final.metadata_hash == "ipfs://Qm2"
        assert final.token_id == "42"

        assert pinning.pinned_documents == [
            {"name": "Art", "description": "desc", "image": "ipfs://Qm1"}
        ]
        assert chain.mints == [(SIGNER_ADDRESS, 1, "ipfs://Qm2")]

        token = await store.get_nft_token("42")
        assert token is not None
        assert token.upload_status_id == upload_status_id
        assert token.metadata_hash == "ipfs://Qm2"

    @pytest.mark.asyncio
    async def test_every_transition_is_written_in_order(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        observed = [
            tuple(snapshot.step_status(step) for step in ALL_STEPS) for snapshot in store.history
        ]
        assert observed == [
            ("in_progress", "pending", "pending", "pending"),
            ("completed", "pending", "pending", "pending"),
            ("completed", "in_progress", "pending", "pending"),
            ("completed", "completed", "pending", "pending"),
            ("completed", "completed", "in_progress", "pending"),
            ("completed", "completed", "completed", "pending"),
            ("completed", "completed", "completed", "in_progress"),
            ("completed", "completed", "completed", "completed"),
        ]
        for snapshot in store.history:
            assert_hash_and_token_invariants(snapshot)

    @pytest.mark.asyncio
    async def test_custom_recipient_and_amount(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        recipient = "0x000000000000000000000000000000000000dEaD"
        pipeline = UploadPipeline(store, pinning, chain, mint_amount=3, recipient=recipient)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        assert chain.mints == [(recipient, 3, "ipfs://Qm2")]

    @pytest.mark.asyncio
    async def test_pin_only_run_leaves_mint_steps_pending(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        pipeline = UploadPipeline(store, pinning)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission), PIN_ONLY_STEPS)

        final = await store.get_upload_status(upload_status_id)
        assert final.image_upload_status == "completed"
        assert final.metadata_upload_status == "completed"
        assert final.metadata_hash == "ipfs://Qm2"
        assert final.nft_mint_status == "pending"
        assert final.db_save_status == "pending"


class TestFailedRuns:
    """Any step failure halts the run and reconciles the rest to failed."""

    @pytest.mark.asyncio
    async def test_image_pin_network_error(
        self,
        store: RecordingDatabaseService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        pinning = FakePinataService(file_error=network_pin_error())
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        final = await store.get_upload_status(upload_status_id)
        for step in ALL_STEPS:
            assert final.step_status(step) == "failed"
        assert final.metadata_hash is None
        assert final.token_id is None
        assert chain.mints == []

        for snapshot in store.history:
            for step in ALL_STEPS[1:]:
                assert snapshot.step_status(step) != "completed"

    @pytest.mark.asyncio
    async def test_mint_failure_keeps_completed_pin_steps(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        chain = FakeChainService(mint_error=reverted_mint_error())
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        final = await store.get_upload_status(upload_status_id)
        assert final.image_upload_status == "completed"
        assert final.metadata_upload_status == "completed"
        assert final.metadata_hash == "ipfs://Qm2"
        assert final.nft_mint_status == "failed"
        assert final.db_save_status == "failed"
        assert final.token_id is None

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_token_id(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        supabase_client.table("nft_tokens").fail_next = ConnectionError("db down")
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        final = await store.get_upload_status(upload_status_id)
        assert final.nft_mint_status == "completed"
        assert final.token_id == "42"
        assert final.db_save_status == "failed"

    @pytest.mark.asyncio
    async def test_pin_only_failure_fails_every_remaining_step(
        self,
        store: RecordingDatabaseService,
        sample_submission: dict,
    ) -> None:
        pinning = FakePinataService(json_error=PinError("pinata down"))
        pipeline = UploadPipeline(store, pinning)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission), PIN_ONLY_STEPS)

        final = await store.get_upload_status(upload_status_id)
        assert final.image_upload_status == "completed"
        assert final.metadata_upload_status == "failed"
        assert final.nft_mint_status == "failed"
        assert final.db_save_status == "failed"

    @pytest.mark.asyncio
    async def test_pin_only_failure_matches_stale_recovery(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        sample_submission: dict,
    ) -> None:
        pinning = FakePinataService(json_error=PinError("pinata down"))
        pipeline = UploadPipeline(store, pinning)
        failed_id = await store.create_upload_status()
        await pipeline.run(make_job(failed_id, sample_submission), PIN_ONLY_STEPS)

        crashed_id = await store.create_upload_status()
        await store.update_upload_status(
            crashed_id, image_upload_status="completed", metadata_upload_status="in_progress"
        )
        later = datetime.utcnow() + timedelta(hours=2)
        await recover_stale_runs(pipeline, 3600, now=later)

        failed = await store.get_upload_status(failed_id)
        crashed = await store.get_upload_status(crashed_id)
        for step in ALL_STEPS:
            assert failed.step_status(step) == crashed.step_status(step)

    @pytest.mark.asyncio
    async def test_failed_status_write_does_not_hide_step_error(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        sample_submission: dict,
    ) -> None:
        table = supabase_client.table("upload_statuses")

        class FailingPinning(FakePinataService):
            async def pin_file(self, content, filename="upload", content_type=""):
                table.fail_next = ConnectionError("db down")
                raise PinError("pinata down")

        pipeline = UploadPipeline(store, FailingPinning())
        upload_status_id = await store.create_upload_status()

        with pytest.raises(PinError):
            await pipeline._run_step(
                upload_status_id,
                "image_upload_status",
                lambda: pipeline.pinning.pin_file(b"image-bytes"),
            )

        current = await store.get_upload_status(upload_status_id)
        assert current.image_upload_status == "in_progress"
        reconciled = await pipeline.reconcile(upload_status_id)
        assert reconciled.image_upload_status == "failed"

    @settings(max_examples=50, deadline=None)
    @given(
        failing_step=st.sampled_from(["image", "metadata", "mint", "persist", None]),
    )
    @pytest.mark.asyncio
    async def test_invariants_hold_at_every_observed_write(self, failing_step) -> None:
        supabase_client = MockSupabaseClient()
        store = RecordingDatabaseService(supabase_client)
        pinning = FakePinataService(
            file_cid="ipfs://Qm1",
            json_cid="ipfs://Qm2",
            file_error=network_pin_error() if failing_step == "image" else None,
            json_error=PinError("pinata down") if failing_step == "metadata" else None,
        )
        chain = FakeChainService(
            mint_error=ChainError("rpc down") if failing_step == "mint" else None
        )
        if failing_step == "persist":
            supabase_client.table("nft_tokens").fail_next = ConnectionError("db down")

        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()
        await pipeline.run(make_job(upload_status_id, SUBMISSION))

        final = await store.get_upload_status(upload_status_id)
        assert final.is_terminal()
        assert_hash_and_token_invariants(final)

        completed_so_far: set[str] = set()
        for snapshot in store.history:
            assert_hash_and_token_invariants(snapshot)
            for step in completed_so_far:
                assert snapshot.step_status(step) == "completed"
            completed_so_far |= {
                step for step in ALL_STEPS if snapshot.step_status(step) == "completed"
            }

        if failing_step is None:
            assert all(final.step_status(step) == "completed" for step in ALL_STEPS)
        else:
            assert any(final.step_status(step) == "failed" for step in ALL_STEPS)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reconciled(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        chain = FakeChainService(mint_error=RuntimeError("boom"))
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        await pipeline.run(make_job(upload_status_id, sample_submission))

        final = await store.get_upload_status(upload_status_id)
        assert final.nft_mint_status == "failed"
        assert final.db_save_status == "failed"


class TestRunArguments:
    """Invalid step scopes are rejected before any write."""

    @pytest.mark.asyncio
    async def test_non_prefix_steps_rejected(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        pipeline = UploadPipeline(store, pinning, chain)
        upload_status_id = await store.create_upload_status()

        with pytest.raises(ValueError):
            await pipeline.run(
                make_job(upload_status_id, sample_submission),
                ("nft_mint_status", "db_save_status"),
            )
        assert store.history == []

    @pytest.mark.asyncio
    async def test_mint_without_chain_rejected(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        pipeline = UploadPipeline(store, pinning)
        upload_status_id = await store.create_upload_status()

        with pytest.raises(ValueError):
            await pipeline.run(make_job(upload_status_id, sample_submission))


class TestRegistrationRun:
    """register() runs Mint and Persist for a pinned upload."""

    async def pinned_record(
        self, store: RecordingDatabaseService, pinning: FakePinataService, submission: dict
    ) -> UploadStatus:
        upload_status_id = await store.create_upload_status()
        await UploadPipeline(store, pinning).run(
            make_job(upload_status_id, submission), PIN_ONLY_STEPS
        )
        return await store.get_upload_status(upload_status_id)

    @pytest.mark.asyncio
    async def test_registration_persists_token(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        record = await self.pinned_record(store, pinning, sample_submission)

        token_id = await UploadPipeline(store, pinning, chain).register(record)

        final = await store.get_upload_status(record.id)
        assert token_id == "42"
        assert final.nft_mint_status == "completed"
        assert final.db_save_status == "completed"
        assert final.is_terminal()
        token = await store.get_nft_token("42")
        assert token.upload_status_id == record.id
        assert token.metadata_hash == "ipfs://Qm2"

    @pytest.mark.asyncio
    async def test_chain_failure_fails_remaining_steps(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        record = await self.pinned_record(store, pinning, sample_submission)
        chain = FakeChainService(register_error=ChainError("signature rejected"))

        with pytest.raises(ChainError):
            await UploadPipeline(store, pinning, chain).register(record, 3, "0x" + "cd" * 65)

        final = await store.get_upload_status(record.id)
        assert final.nft_mint_status == "failed"
        assert final.db_save_status == "failed"
        assert final.token_id is None

    @pytest.mark.asyncio
    async def test_unrecorded_completion_is_reconciled(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        record = await self.pinned_record(store, pinning, sample_submission)
        table = supabase_client.table("upload_statuses")

        class UnrecordedChain(FakeChainService):
            async def register_nft(self, metadata_hash, nonce, signature):
                table.fail_next = ConnectionError("db down")
                return await super().register_nft(metadata_hash, nonce, signature)

        with pytest.raises(StoreError):
            await UploadPipeline(store, pinning, UnrecordedChain()).register(record)

        final = await store.get_upload_status(record.id)
        assert final.nft_mint_status == "failed"
        assert final.db_save_status == "failed"
        assert final.token_id is None

    @pytest.mark.asyncio
    async def test_persist_failure_still_returns_token(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        chain: FakeChainService,
        sample_submission: dict,
    ) -> None:
        record = await self.pinned_record(store, pinning, sample_submission)
        supabase_client.table("nft_tokens").fail_next = ConnectionError("db down")

        token_id = await UploadPipeline(store, pinning, chain).register(record)

        final = await store.get_upload_status(record.id)
        assert token_id == "42"
        assert final.nft_mint_status == "completed"
        assert final.token_id == "42"
        assert final.db_save_status == "failed"

    @pytest.mark.asyncio
    async def test_register_without_chain_rejected(
        self,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
        sample_submission: dict,
    ) -> None:
        record = await self.pinned_record(store, pinning, sample_submission)

        with pytest.raises(ValueError):
            await UploadPipeline(store, pinning).register(record)


class TestReconcile:
    """reconcile() and stale-run recovery."""

    @pytest.mark.asyncio
    async def test_reconcile_missing_record_returns_none(
        self, store: RecordingDatabaseService, pinning: FakePinataService
    ) -> None:
        pipeline = UploadPipeline(store, pinning)

        assert await pipeline.reconcile("missing") is None

    @pytest.mark.asyncio
    async def test_reconcile_store_error_returns_none(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
    ) -> None:
        pipeline = UploadPipeline(store, pinning)
        upload_status_id = await store.create_upload_status()
        supabase_client.table("upload_statuses").fail_next = ConnectionError("db down")

        assert await pipeline.reconcile(upload_status_id) is None

    @pytest.mark.asyncio
    async def test_recover_stale_runs(
        self, store: RecordingDatabaseService, pinning: FakePinataService
    ) -> None:
        pipeline = UploadPipeline(store, pinning)

        stuck_id = await store.create_upload_status()
        await store.update_upload_status(
            stuck_id,
            image_upload_status="completed",
            metadata_upload_status="in_progress",
        )
        fresh_id = await store.create_upload_status()

        recovered = await recover_stale_runs(
            pipeline, stale_after_seconds=60, now=datetime.utcnow() + timedelta(minutes=5)
        )

        assert recovered == 1
        stuck = await store.get_upload_status(stuck_id)
        assert stuck.image_upload_status == "completed"
        assert stuck.metadata_upload_status == "failed"
        assert stuck.nft_mint_status == "failed"
        assert stuck.db_save_status == "failed"

        fresh = await store.get_upload_status(fresh_id)
        assert fresh.image_upload_status == "pending"

    @pytest.mark.asyncio
    async def test_recover_stale_runs_propagates_query_failure(
        self,
        supabase_client: MockSupabaseClient,
        store: RecordingDatabaseService,
        pinning: FakePinataService,
    ) -> None:
        pipeline = UploadPipeline(store, pinning)
        supabase_client.table("upload_statuses").fail_next = ConnectionError("db down")

        with pytest.raises(StoreError):
            await recover_stale_runs(pipeline, stale_after_seconds=60)
