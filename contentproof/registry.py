"""
ContentProof Chain Registry Client

Abstraction over the on-chain registry contract. ``register`` is the one
state-changing, non-idempotent primitive in the protocol; ``resolve`` is a
read-only lookup. Callers must ``resolve`` before ``register``.

Contract surface::

    function register(bytes32 contentHash, string manifestURI)
    function entries(bytes32) view returns (address creator, bytes32 contentHash,
                                            string manifestURI, uint64 timestamp)
    event ContentRegistered(bytes32 indexed contentHash, address indexed creator,
                            string manifestURI, uint64 timestamp)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from .chains import chain_by_name
from .config import ProvenanceConfig
from .errors import ChainError, ConfigError, ValidationError
from .hashing import content_hash_bytes32, normalize_content_hash
from .util import now_epoch

logger = logging.getLogger(__name__)

DEFAULT_LOG_LOOKBACK_BLOCKS = 1_000_000

REGISTRY_ABI = [
    {
        "type": "function",
        "name": "register",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "contentHash", "type": "bytes32"},
            {"name": "manifestURI", "type": "string"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "entries",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "bytes32"}],
        "outputs": [
            {"name": "creator", "type": "address"},
            {"name": "contentHash", "type": "bytes32"},
            {"name": "manifestURI", "type": "string"},
            {"name": "timestamp", "type": "uint64"},
        ],
    },
    {
        "type": "event",
        "name": "ContentRegistered",
        "anonymous": False,
        "inputs": [
            {"name": "contentHash", "type": "bytes32", "indexed": True},
            {"name": "creator", "type": "address", "indexed": True},
            {"name": "manifestURI", "type": "string", "indexed": False},
            {"name": "timestamp", "type": "uint64", "indexed": False},
        ],
    },
]

CONTENT_REGISTERED_TOPIC = Web3.to_hex(Web3.keccak(text="ContentRegistered(bytes32,address,string,uint64)"))


@dataclass
class RegistryEntry:
    """One live registry row: at most one per content hash per chain."""
    content_hash: str
    manifest_uri: str
    creator_address: str
    chain_id: int
    registered_at: int
    tx_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contentHash": self.content_hash,
            "manifestUri": self.manifest_uri,
            "creatorAddress": self.creator_address,
            "txHash": self.tx_hash,
            "chainId": self.chain_id,
            "registeredAt": self.registered_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RegistryEntry':
        return cls(
            content_hash=data["contentHash"],
            manifest_uri=data["manifestUri"],
            creator_address=data["creatorAddress"],
            chain_id=int(data["chainId"]),
            registered_at=int(data["registeredAt"]),
            tx_hash=data.get("txHash"),
        )


@dataclass
class TxReceipt:
    """Mined registration transaction."""
    tx_hash: str
    block_number: int
    chain_id: int
    creator_address: str
    registered_at: int
    status: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ChainRegistryClient(ABC):
    """Register/resolve capability over one registry deployment on one chain."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Chain id of the connected network."""

    @property
    def sender_address(self) -> Optional[str]:
        """Address that ``register`` transactions are sent from, if known."""
        return None

    @abstractmethod
    def register(self, content_hash: str, manifest_uri: str) -> TxReceipt:
        """
        Submit a registration transaction and wait for it to be mined.

        Raises:
            ChainError: RPC unreachable, insufficient funds, revert or timeout
        """

    @abstractmethod
    def resolve(self, content_hash: str) -> Optional[RegistryEntry]:
        """
        Look up the live entry for a content hash.

        Returns:
            The entry, or None if the hash was never registered

        Raises:
            ChainError: If the registry cannot be read
        """


def _chain_error(e: Exception, action: str) -> ChainError:
    """Classify a web3/transport failure."""
    text = str(e)
    if isinstance(e, ContractLogicError):
        return ChainError(ChainError.REVERTED, f"{action} reverted: {text}")
    if isinstance(e, TimeExhausted):
        return ChainError(ChainError.TIMEOUT, f"{action} timed out: {text}")
    if isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return ChainError(ChainError.RPC_UNREACHABLE, f"RPC unreachable during {action}: {text}")
    if "insufficient funds" in text.lower():
        return ChainError(ChainError.INSUFFICIENT_FUNDS, f"{action} failed: insufficient funds for gas")
    return ChainError(ChainError.RPC_ERROR, f"{action} failed: {text}")


_CHAIN_FAILURES = (Web3Exception, requests.exceptions.RequestException, ValueError)


class Web3ChainRegistry(ChainRegistryClient):
    """
    Registry client over a JSON-RPC node.

    Transactions are signed locally with ``private_key`` and sent raw; the
    node never holds the key. Without a key the client is read-only.
    """

    def __init__(
        self,
        rpc_url: str,
        registry_address: str,
        private_key: Optional[str] = None,
        timeout: float = 30.0,
        tx_timeout: float = 180.0,
        start_block: Optional[int] = None,
        web3: Optional[Web3] = None,
    ):
        if not Web3.is_address(registry_address or ""):
            raise ValidationError("registryAddress", "must be a valid EVM address")
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.address = Web3.to_checksum_address(registry_address)
        self.contract = self.w3.eth.contract(address=self.address, abi=REGISTRY_ABI)
        self.tx_timeout = tx_timeout
        self.start_block = start_block
        self._account = Account.from_key(private_key) if private_key else None
        self._chain_id: Optional[int] = None

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = int(self.w3.eth.chain_id)
            except _CHAIN_FAILURES as e:
                raise _chain_error(e, "chain id lookup") from e
        return self._chain_id

    @property
    def sender_address(self) -> Optional[str]:
        return self._account.address if self._account else None

    def resolve(self, content_hash: str) -> Optional[RegistryEntry]:
        key = content_hash_bytes32(content_hash)
        try:
            creator, _, manifest_uri, timestamp = self.contract.functions.entries(key).call()
        except _CHAIN_FAILURES as e:
            raise _chain_error(e, "registry lookup") from e

        if not creator or int(creator, 16) == 0:
            return None

        return RegistryEntry(
            content_hash=normalize_content_hash(content_hash),
            manifest_uri=manifest_uri,
            creator_address=Web3.to_checksum_address(creator),
            chain_id=self.chain_id,
            registered_at=int(timestamp),
            tx_hash=self._find_registration_tx(key),
        )

    def _find_registration_tx(self, key: bytes) -> Optional[str]:
        """
        Recover the registration transaction hash from the event log.

        Many public RPCs cap log ranges; a failed scan leaves the hash unknown
        rather than failing the lookup.
        """
        try:
            latest = self.w3.eth.block_number
            from_block = self.start_block
            if from_block is None:
                from_block = max(0, latest - DEFAULT_LOG_LOOKBACK_BLOCKS)
            logs = self.w3.eth.get_logs({
                "address": self.address,
                "fromBlock": from_block,
                "toBlock": latest,
                "topics": [CONTENT_REGISTERED_TOPIC, Web3.to_hex(key)],
            })
        except _CHAIN_FAILURES as e:
            logger.warning("Registration log scan failed: %s", e)
            return None
        if not logs:
            return None
        return Web3.to_hex(logs[0]["transactionHash"])

    def register(self, content_hash: str, manifest_uri: str) -> TxReceipt:
        if self._account is None:
            raise ConfigError(["privateKey"], "A private key is required to send registry transactions")
        key = content_hash_bytes32(content_hash)
        chain_id = self.chain_id

        try:
            nonce = self.w3.eth.get_transaction_count(self._account.address, "pending")
            tx = self.contract.functions.register(key, manifest_uri).build_transaction({
                "from": self._account.address,
                "nonce": nonce,
                "chainId": chain_id,
            })
            signed = self._account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info("Registration tx sent: %s", Web3.to_hex(tx_hash))
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except _CHAIN_FAILURES as e:
            raise _chain_error(e, "registration") from e

        if receipt["status"] != 1:
            raise ChainError(ChainError.REVERTED, f"Registration tx {Web3.to_hex(tx_hash)} reverted")

        registered_at = now_epoch()
        events = self.contract.events.ContentRegistered().process_receipt(receipt, errors=DISCARD)
        if events:
            registered_at = int(events[0]["args"]["timestamp"])

        return TxReceipt(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=int(receipt["blockNumber"]),
            chain_id=chain_id,
            creator_address=self._account.address,
            registered_at=registered_at,
            status=int(receipt["status"]),
        )


def resolve_rpc_url(config: ProvenanceConfig) -> Optional[str]:
    """Explicit ``rpcUrl`` wins; otherwise the named chain's default RPC."""
    if config.rpc_url:
        return config.rpc_url
    if config.chain:
        chain = chain_by_name(config.chain)
        if chain is None:
            raise ConfigError(["chain"], f"Unknown chain {config.chain!r}")
        return chain.resolved_rpc_url()
    return None


def get_registry(config: ProvenanceConfig, with_sender: bool = True) -> Web3ChainRegistry:
    """
    Factory: registry client from configuration.

    Raises:
        ConfigError: If the RPC URL or registry address is missing
    """
    rpc_url = resolve_rpc_url(config)
    missing = []
    if not rpc_url:
        missing.append("rpcUrl")
    if not config.registry_address:
        missing.append("registryAddress")
    if missing:
        raise ConfigError(missing)
    return Web3ChainRegistry(
        rpc_url=rpc_url,
        registry_address=config.registry_address,
        private_key=config.private_key if with_sender else None,
        timeout=config.network_timeout_seconds,
        tx_timeout=config.tx_timeout_seconds,
        start_block=config.registry_start_block,
    )
