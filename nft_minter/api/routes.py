"""FastAPI routes for NFT Minter API."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException
from web3 import AsyncWeb3

from nft_minter.api.deps import (
    get_chain_service_dep,
    get_database_service_dep,
    get_pin_pipeline_dep,
    get_upload_pipeline_dep,
)
from nft_minter.models.token import NFTToken
from nft_minter.models.upload_status import (
    ALL_STEPS,
    PIN_ONLY_STEPS,
    UploadStatus,
)
from nft_minter.services.chain import ChainService
from nft_minter.services.database import DatabaseService
from nft_minter.services.pipeline import UploadJob, UploadPipeline
from nft_minter.utils.errors import (
    ChainError,
    ChainTimeoutError,
    NFTMinterError,
    NotFoundError,
    PinError,
    PollTimeoutError,
    StoreError,
    UploadValidationError,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


# ==================== Error Response Model ====================


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str
    error_type: str
    errors: Optional[List[Dict[str, Any]]] = None


# ==================== Exception Handlers ====================


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "error_type": "ValidationError",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def nft_minter_exception_handler(request: Request, exc: NFTMinterError) -> JSONResponse:
    """Handle application-specific errors."""
    # Determine appropriate status code based on error type
    status_code = 500

    if isinstance(exc, UploadValidationError):
        status_code = 400
    elif isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (ChainTimeoutError, PollTimeoutError)):
        status_code = 504
    elif isinstance(exc, (PinError, ChainError)):
        status_code = 502  # Bad Gateway for external service errors
    elif isinstance(exc, StoreError):
        status_code = 500

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "error_type": type(exc).__name__,
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_type": "HTTPException",
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": "InternalError",
        },
    )


# ==================== Request/Response Models ====================


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadResponse(CamelModel):
    """Response model for upload endpoints."""

    success: bool = True
    upload_status_id: str


class RegisterNFTRequest(CamelModel):
    """Request model for the registration endpoint."""

    upload_status_id: str = Field(min_length=1)
    metadata_hash: Optional[str] = None
    nonce: Optional[int] = Field(default=None, ge=0)
    signature: Optional[str] = Field(default=None, min_length=1)


class RegisterNFTResponse(CamelModel):
    """Response model for the registration endpoint."""

    success: bool = True
    token_id: str


class NonceResponse(CamelModel):
    """Response model for the nonce endpoint."""

    address: str
    nonce: int
    contract_address: str


# ==================== Helpers ====================


async def _read_submission(
    file: Optional[UploadFile],
    name: Optional[str],
    description: Optional[str],
) -> dict[str, Any]:
    """Validate submission fields and read the uploaded file."""
    if file is None or not name or not name.strip() or not description or not description.strip():
        raise UploadValidationError("Missing required fields: file, name and description")

    content = await file.read()
    if not content:
        raise UploadValidationError("Uploaded file is empty")

    return {
        "image": content,
        "filename": file.filename or "upload",
        "content_type": file.content_type or "application/octet-stream",
        "name": name,
        "description": description,
    }


async def _start_upload(
    background_tasks: BackgroundTasks,
    db: DatabaseService,
    pipeline: UploadPipeline,
    submission: dict[str, Any],
    steps: tuple[str, ...],
) -> UploadResponse:
    upload_status_id = await db.create_upload_status()

    job = UploadJob(upload_status_id=upload_status_id, **submission)
    background_tasks.add_task(pipeline.run, job, steps)

    logger.info(f"Upload {upload_status_id} accepted ({len(steps)} steps)")
    return UploadResponse(upload_status_id=upload_status_id)


# ==================== Endpoints ====================


@router.post("/upload", response_model=UploadResponse)
async def upload(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    db: DatabaseService = Depends(get_database_service_dep),
    pipeline: UploadPipeline = Depends(get_upload_pipeline_dep),
) -> UploadResponse:
    """
    Pin an image and its metadata, then mint an NFT.

    Creates a pending status record and runs the pipeline in the background.
    Returns immediately with the id to poll.
    """
    submission = await _read_submission(file, name, description)
    return await _start_upload(background_tasks, db, pipeline, submission, ALL_STEPS)


@router.post("/upload-ipfs", response_model=UploadResponse)
async def upload_ipfs(
    background_tasks: BackgroundTasks,
    file: Optional[UploadFile] = File(None),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    db: DatabaseService = Depends(get_database_service_dep),
    pipeline: UploadPipeline = Depends(get_pin_pipeline_dep),
) -> UploadResponse:
    """
    Pin an image and its metadata without minting.

    The token is minted later through /register-nft.
    """
    submission = await _read_submission(file, name, description)
    return await _start_upload(background_tasks, db, pipeline, submission, PIN_ONLY_STEPS)


@router.get(
    "/status/{upload_status_id}",
    response_model=UploadStatus,
    responses={404: {"model": ErrorResponse}},
)
async def get_status(
    upload_status_id: str,
    db: DatabaseService = Depends(get_database_service_dep),
) -> UploadStatus:
    """Get the step-by-step status of an upload."""
    status = await db.get_upload_status(upload_status_id)
    if status is None:
        raise NotFoundError(f"Upload status not found: {upload_status_id}")
    return status


@router.post(
    "/register-nft",
    response_model=RegisterNFTResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def register_nft(
    request: RegisterNFTRequest,
    db: DatabaseService = Depends(get_database_service_dep),
    pipeline: UploadPipeline = Depends(get_upload_pipeline_dep),
) -> RegisterNFTResponse:
    """
    Mint through the signature-authorized registration path.

    Uses the caller's nonce and signature when given; otherwise the server
    reads its own nonce and signs the registration itself. The token row is
    persisted as the run's final step.
    """
    if (request.nonce is None) != (request.signature is None):
        raise HTTPException(status_code=400, detail="nonce and signature must be given together")

    status = await db.get_upload_status(request.upload_status_id)
    if status is None:
        raise NotFoundError(f"Upload status not found: {request.upload_status_id}")

    if status.metadata_upload_status != "completed" or not status.metadata_hash:
        raise HTTPException(
            status_code=409,
            detail=f"Metadata not uploaded for {request.upload_status_id}",
        )

    if request.metadata_hash is not None and request.metadata_hash != status.metadata_hash:
        raise HTTPException(
            status_code=400,
            detail="metadataHash does not match the uploaded metadata",
        )

    if status.nft_mint_status != "pending":
        raise HTTPException(
            status_code=409,
            detail=f"Mint already {status.nft_mint_status} for {request.upload_status_id}",
        )

    token_id = await pipeline.register(status, request.nonce, request.signature)
    return RegisterNFTResponse(token_id=token_id)


@router.get("/register-nft/nonce/{address}", response_model=NonceResponse)
async def get_registration_nonce(
    address: str,
    chain: ChainService = Depends(get_chain_service_dep),
) -> NonceResponse:
    """Get the contract nonce a signer must include in its registration message."""
    if not AsyncWeb3.is_address(address):
        raise HTTPException(status_code=400, detail=f"Invalid address: {address}")

    nonce = await chain.get_nonce(address)
    return NonceResponse(
        address=AsyncWeb3.to_checksum_address(address),
        nonce=nonce,
        contract_address=chain.contract_address,
    )


@router.get(
    "/tokens/{token_id}",
    response_model=NFTToken,
    responses={404: {"model": ErrorResponse}},
)
async def get_token(
    token_id: str,
    db: DatabaseService = Depends(get_database_service_dep),
) -> NFTToken:
    """Get the stored record of a minted token."""
    token = await db.get_nft_token(token_id)
    if token is None:
        raise NotFoundError(f"Token not found: {token_id}")
    return token
