"""Chain service for minting and registering NFTs through web3."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import AsyncWeb3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.logs import DISCARD

from nft_minter.utils.errors import ChainError, ChainTimeoutError

logger = logging.getLogger(__name__)

BUNDLED_ABI_PATH = Path(__file__).resolve().parent.parent / "abi" / "MyNFT.json"

# registerNFT receipts carry the token id at this topic index of the first log
REGISTRATION_TOKEN_TOPIC = 2


def load_contract_abi(path: str = "") -> list[dict[str, Any]]:
    """
    Load a contract ABI from a JSON file.

    Accepts either a bare ABI list or a Hardhat artifact with an ``abi`` key.
    An empty path loads the bundled MyNFT ABI.
    """
    abi_path = Path(path) if path else BUNDLED_ABI_PATH
    with open(abi_path, "r") as f:
        contract_json = json.load(f)

    if isinstance(contract_json, dict):
        return contract_json["abi"]
    return contract_json


class ChainService:
    """Service wrapping an EVM JSON-RPC endpoint and a signing key."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        contract_address: str,
        abi: list[dict[str, Any]],
        chain_id: Optional[int] = None,
        receipt_timeout: float = 120.0,
        poll_latency: float = 2.0,
        web3: Optional[AsyncWeb3] = None,
    ) -> None:
        """
        Initialize the ChainService.

        Args:
            rpc_url: JSON-RPC endpoint URL
            private_key: Hex private key of the server signer
            contract_address: Deployed NFT contract address
            abi: Contract ABI
            chain_id: Chain ID override (read from the node when None)
            receipt_timeout: Seconds to wait for a transaction receipt
            poll_latency: Seconds between receipt polls
            web3: Optional preconfigured AsyncWeb3 instance
        """
        self.web3 = web3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self.account = Account.from_key(private_key)
        self.contract_address = AsyncWeb3.to_checksum_address(contract_address)
        self.contract = self.web3.eth.contract(address=self.contract_address, abi=abi)
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.poll_latency = poll_latency

    @property
    def address(self) -> str:
        """Checksum address of the server signer."""
        return self.account.address

    # ==================== MINT ====================

    async def mint(self, owner: str, amount: int, metadata_content_id: str) -> str:
        """
        Mint tokens referencing pinned metadata.

        Args:
            owner: Recipient address
            amount: Number of copies to mint
            metadata_content_id: ``ipfs://`` URI of the metadata document

        Returns:
            The assigned token ID as a decimal string

        Raises:
            ChainTimeoutError: If the transaction is not confirmed in time
            ChainError: If submission, confirmation or ID extraction fails
        """
        try:
            mint_function = self.contract.functions.mint(
                AsyncWeb3.to_checksum_address(owner), amount, metadata_content_id
            )
            receipt = await self._send_transaction(mint_function, "mint")

            token_id = self._token_id_from_mint_receipt(receipt)
            if token_id is None:
                counter = await self._read_token_counter()
                if counter < 1:
                    raise ChainError(f"Token counter {counter} cannot identify a minted token")
                token_id = str(counter - 1)
                # Racy: a concurrent mint between confirmation and this read shifts the counter
                logger.warning(
                    f"No TransferSingle event in mint receipt; "
                    f"derived token {token_id} from currentTokenID={counter}"
                )

            logger.info(f"Minted token {token_id} to {owner}")
            return token_id

        except ChainError:
            raise
        except Exception as e:
            raise ChainError(f"Mint failed: {e}")

    def _token_id_from_mint_receipt(self, receipt: Any) -> Optional[str]:
        """Return the id of the first TransferSingle event from this contract, or None."""
        try:
            events = self.contract.events.TransferSingle().process_receipt(
                receipt, errors=DISCARD
            )
        except (Web3Exception, AttributeError, KeyError, ValueError) as e:
            logger.warning(f"Failed to parse mint receipt logs: {e}")
            return None

        for event in events:
            if str(event["address"]).lower() != self.contract_address.lower():
                continue
            token_id = event["args"].get("id")
            if token_id is not None:
                return str(token_id)

        return None

    async def _read_token_counter(self) -> int:
        return await self.contract.functions.currentTokenID().call()

    # ==================== REGISTRATION ====================

    async def get_nonce(self, address: str) -> int:
        """
        Read the contract's replay-protection nonce for a signer.

        Raises:
            ChainError: If the call fails
        """
        try:
            return await self.contract.functions.getNonce(
                AsyncWeb3.to_checksum_address(address)
            ).call()
        except Exception as e:
            raise ChainError(f"Failed to read nonce for {address}: {e}")

    def registration_digest(self, metadata_hash: str, nonce: int) -> bytes:
        """keccak256(abi.encodePacked(metadataHash, nonce, contractAddress))."""
        return bytes(
            AsyncWeb3.solidity_keccak(
                ["string", "uint256", "address"],
                [metadata_hash, nonce, self.contract_address],
            )
        )

    def sign_registration(self, metadata_hash: str, nonce: int) -> str:
        """
        Sign a registration message with the server key.

        Returns:
            0x-prefixed hex signature over the EIP-191 prefixed digest
        """
        message = encode_defunct(primitive=self.registration_digest(metadata_hash, nonce))
        signed = self.account.sign_message(message)
        return AsyncWeb3.to_hex(signed.signature)

    async def register_nft(self, metadata_hash: str, nonce: int, signature: str) -> str:
        """
        Register an NFT authorized by a signed message.

        The contract verifies the signature and nonce on-chain.

        Args:
            metadata_hash: ``ipfs://`` URI of the metadata document
            nonce: Signer's nonce at signing time
            signature: Hex signature over the registration digest

        Returns:
            The assigned token ID as a decimal string

        Raises:
            ChainTimeoutError: If the transaction is not confirmed in time
            ChainError: If submission fails or the receipt has no usable log
        """
        try:
            register_function = self.contract.functions.registerNFT(
                metadata_hash, nonce, AsyncWeb3.to_bytes(hexstr=signature)
            )
            receipt = await self._send_transaction(register_function, "registerNFT")
            token_id = self._token_id_from_registration_receipt(receipt)

            logger.info(f"Registered token {token_id} for {metadata_hash}")
            return token_id

        except ChainError:
            raise
        except Exception as e:
            raise ChainError(f"Registration failed: {e}")

    def _token_id_from_registration_receipt(self, receipt: Any) -> str:
        """Read the token id from topics[2] of the first log after validating the log."""
        logs = receipt["logs"]
        if not logs:
            raise ChainError("registerNFT receipt has no logs")

        first_log = logs[0]
        if str(first_log["address"]).lower() != self.contract_address.lower():
            raise ChainError(f"First registerNFT log was emitted by {first_log['address']}")

        topics = first_log["topics"]
        if len(topics) <= REGISTRATION_TOKEN_TOPIC:
            raise ChainError(f"First registerNFT log has {len(topics)} topics, expected at least 3")

        return str(AsyncWeb3.to_int(topics[REGISTRATION_TOKEN_TOPIC]))

    # ==================== TRANSACTIONS ====================

    async def _send_transaction(self, contract_function: Any, label: str) -> Any:
        """Build, sign and send a contract call, then wait for a successful receipt."""
        nonce = await self.web3.eth.get_transaction_count(self.account.address, "pending")

        tx_params: dict[str, Any] = {"from": self.account.address, "nonce": nonce}
        if self.chain_id is not None:
            tx_params["chainId"] = self.chain_id

        tx = await contract_function.build_transaction(tx_params)
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash_hex = AsyncWeb3.to_hex(tx_hash)
        logger.info(f"{label} transaction submitted: {tx_hash_hex}")

        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_latency=self.poll_latency,
            )
        except TimeExhausted:
            raise ChainTimeoutError(tx_hash_hex, self.receipt_timeout)

        if receipt["status"] != 1:
            raise ChainError(f"{label} transaction {tx_hash_hex} reverted")

        logger.info(f"{label} transaction confirmed in block {receipt['blockNumber']}")
        return receipt


def create_chain_service() -> ChainService:
    """
    Create a ChainService instance using application settings.

    Returns:
        Configured ChainService instance
    """
    from nft_minter.config import get_settings

    settings = get_settings()
    return ChainService(
        rpc_url=settings.ethereum_rpc_url,
        private_key=settings.private_key,
        contract_address=settings.contract_address,
        abi=load_contract_abi(settings.contract_abi_path),
        chain_id=settings.chain_id,
        receipt_timeout=settings.receipt_timeout_seconds,
        poll_latency=settings.receipt_poll_interval_seconds,
    )
