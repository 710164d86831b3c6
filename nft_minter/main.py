import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from nft_minter.api.routes import (
    generic_exception_handler,
    http_exception_handler,
    nft_minter_exception_handler,
    router,
    validation_exception_handler,
)
from nft_minter.config import get_settings
from nft_minter.services.pipeline import create_upload_pipeline, recover_stale_runs
from nft_minter.utils.errors import NFTMinterError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Reconcile uploads abandoned by a previous process before serving."""
    try:
        pipeline = create_upload_pipeline(with_chain=False)
        await recover_stale_runs(pipeline, settings.stale_run_seconds)
    except Exception as e:
        logger.warning(f"Skipping stale upload recovery: {e}")
    yield


app = FastAPI(title="NFT Minter API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(NFTMinterError, nft_minter_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(router, prefix="/api")


def run() -> None:
    """Serve the API with uvicorn."""
    uvicorn.run("nft_minter.main:app", host="0.0.0.0", port=3000)


if __name__ == "__main__":
    uvicorn.run("nft_minter.main:app", host="0.0.0.0", port=3000, reload=True)
