"""Shareable proof bundle for a verified (or rejected) piece of content."""

from typing import Any, Dict, Optional

from .chains import ChainConfig, chain_by_id
from .util import now_epoch, utc_rfc3339
from .verifier import VerificationVerdict


def build_proof(
    verdict: VerificationVerdict,
    registry_address: Optional[str] = None,
    file_name: Optional[str] = None,
    chain: Optional[ChainConfig] = None,
    generated_at: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Combine a verdict with network details into a standalone JSON document.

    The chain is taken from the registry entry's chain id when not given.
    """
    entry = verdict.registry_entry
    if chain is None and entry is not None:
        chain = chain_by_id(entry.chain_id)

    tx_hash = entry.tx_hash if entry else None
    network = None
    if chain is not None:
        network = {
            "name": chain.name,
            "displayName": chain.display_name,
            "chainId": chain.chain_id,
            "testnet": chain.testnet,
        }
    elif entry is not None:
        network = {"chainId": entry.chain_id}

    return {
        "status": verdict.status.value,
        "reasons": list(verdict.reasons),
        "generatedAt": utc_rfc3339(generated_at if generated_at is not None else now_epoch()),
        "network": network,
        "registryAddress": registry_address,
        "content": {
            "fileName": file_name,
            "contentHash": verdict.recomputed_hash
            or (verdict.manifest.content_hash if verdict.manifest else None),
        },
        "manifestUri": verdict.manifest_uri or (entry.manifest_uri if entry else None),
        "manifest": verdict.manifest.to_dict() if verdict.manifest else None,
        "recoveredSigner": verdict.recovered_address,
        "onChain": entry.to_dict() if entry else None,
        "txHash": tx_hash,
        "explorerUrl": chain.tx_url(tx_hash) if chain is not None and tx_hash else None,
    }
