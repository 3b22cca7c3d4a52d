"""
Multi-chain configuration for ContentProof.

RPC URLs, block explorers and chain ids of the networks the registry is
deployed to. Default RPC URLs can be overridden per chain with
``<NAME>_RPC_URL`` environment variables (e.g. ``BASE_SEPOLIA_RPC_URL``).
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    display_name: str
    rpc_url: str
    block_explorer: str
    testnet: bool

    def resolved_rpc_url(self) -> str:
        env_name = re.sub(r'(?<!^)(?=[A-Z])', '_', self.name).upper() + "_RPC_URL"
        return os.getenv(env_name) or self.rpc_url

    def tx_url(self, tx_hash: str) -> Optional[str]:
        if not self.block_explorer:
            return None
        return f"{self.block_explorer}/tx/{tx_hash}"


SUPPORTED_CHAINS: Dict[str, ChainConfig] = {
    c.name: c for c in (
        ChainConfig(1, "ethereum", "Ethereum Mainnet", "https://eth.llamarpc.com",
                    "https://etherscan.io", False),
        ChainConfig(11155111, "sepolia", "Ethereum Sepolia", "https://ethereum-sepolia-rpc.publicnode.com",
                    "https://sepolia.etherscan.io", True),
        ChainConfig(137, "polygon", "Polygon", "https://polygon-rpc.com",
                    "https://polygonscan.com", False),
        ChainConfig(80002, "polygonAmoy", "Polygon Amoy", "https://rpc-amoy.polygon.technology",
                    "https://amoy.polygonscan.com", True),
        ChainConfig(8453, "base", "Base", "https://mainnet.base.org",
                    "https://basescan.org", False),
        ChainConfig(84532, "baseSepolia", "Base Sepolia", "https://sepolia.base.org",
                    "https://sepolia.basescan.org", True),
        ChainConfig(42161, "arbitrum", "Arbitrum One", "https://arb1.arbitrum.io/rpc",
                    "https://arbiscan.io", False),
        ChainConfig(421614, "arbitrumSepolia", "Arbitrum Sepolia", "https://sepolia-rollup.arbitrum.io/rpc",
                    "https://sepolia.arbiscan.io", True),
        ChainConfig(10, "optimism", "Optimism", "https://mainnet.optimism.io",
                    "https://optimistic.etherscan.io", False),
        ChainConfig(11155420, "optimismSepolia", "Optimism Sepolia", "https://sepolia.optimism.io",
                    "https://sepolia-optimism.etherscan.io", True),
        ChainConfig(31337, "localhost", "Hardhat Local", "http://127.0.0.1:8545", "", True),
    )
}

DEFAULT_CHAIN = "baseSepolia"


def chain_by_name(name: str) -> Optional[ChainConfig]:
    return SUPPORTED_CHAINS.get(name)


def chain_by_id(chain_id: int) -> Optional[ChainConfig]:
    for chain in SUPPORTED_CHAINS.values():
        if chain.chain_id == chain_id:
            return chain
    return None
