"""Upload status Pydantic model."""

from datetime import datetime
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StepStatus = Literal["pending", "in_progress", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})

# Step fields in the order the pipeline runs them
IMAGE_STEP = "image_upload_status"
METADATA_STEP = "metadata_upload_status"
MINT_STEP = "nft_mint_status"
PERSIST_STEP = "db_save_status"

ALL_STEPS: tuple[str, ...] = (IMAGE_STEP, METADATA_STEP, MINT_STEP, PERSIST_STEP)
PIN_ONLY_STEPS: tuple[str, ...] = (IMAGE_STEP, METADATA_STEP)


class UploadStatus(BaseModel):
    """Step-by-step status of one upload/mint attempt."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(min_length=1)
    image_upload_status: StepStatus = "pending"
    metadata_upload_status: StepStatus = "pending"
    nft_mint_status: StepStatus = "pending"
    db_save_status: StepStatus = "pending"
    metadata_hash: Optional[str] = None
    token_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def step_status(self, step: str) -> str:
        """Return the status of a step field."""
        if step not in ALL_STEPS:
            raise ValueError(f"Unknown step: {step}")
        return getattr(self, step)

    def is_terminal(self, steps: Iterable[str] = ALL_STEPS) -> bool:
        """True once every step in ``steps`` is completed or failed."""
        return all(self.step_status(step) in TERMINAL_STATUSES for step in steps)

    def reconciled(self, steps: Iterable[str] = ALL_STEPS) -> dict[str, str]:
        """
        Compute the updates that mark every not-completed step failed.

        Completed steps are never included, so applying the result can only
        move ``pending``/``in_progress`` to ``failed``.
        """
        return {
            step: "failed"
            for step in steps
            if self.step_status(step) not in ("completed", "failed")
        }
