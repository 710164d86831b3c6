"""Custom exception classes for NFT Minter."""


class NFTMinterError(Exception):
    """Base exception for all application errors."""

    pass


class UploadValidationError(NFTMinterError):
    """Submission is missing required fields."""

    pass


class NotFoundError(NFTMinterError):
    """Requested record does not exist."""

    pass


class StoreError(NFTMinterError):
    """Errors from the status record store."""

    pass


class PinError(NFTMinterError):
    """Errors from the pinning service."""

    pass


class PinataAPIError(PinError):
    """Pinata API returned an error."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"Pinata error {status_code}: {message}")


class ChainError(NFTMinterError):
    """Errors from the chain client."""

    pass


class ChainTimeoutError(ChainError):
    """Transaction was not confirmed before the deadline."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Transaction {tx_hash} not confirmed within {timeout}s")


class PollTimeoutError(NFTMinterError):
    """Status never reached a terminal state while polling."""

    pass
