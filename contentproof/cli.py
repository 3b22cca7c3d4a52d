#!/usr/bin/env python3
"""
ContentProof Command Line Interface

Usage:
    contentproof init
    contentproof upload <file> [--upload-content] [--private-key K] [--rpc-url U] [--registry A] [--ipfs-provider P]
    contentproof verify <file-or-manifest-uri> [--manifest URI] [--rpc-url U] [--registry A]
    contentproof proof <file> [--manifest URI] [-o proof.json]
    contentproof keygen

Exit status: 0 on success or a verified verdict, 1 on a negative verdict,
2 on errors (a JSON error with a ``kind`` field is written to stderr).
"""

import argparse
import getpass
import json
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from .chains import DEFAULT_CHAIN, SUPPORTED_CHAINS
from .config import PROVIDER_CREDENTIALS, STORAGE_PROVIDERS, ProvenanceConfig
from .errors import ConfigError, ProvenanceError
from .hashing import HashReadError
from .journal import RegistrationJournal
from .logging_config import configure_logging, sanitize_for_logging, set_request_id
from .orchestrator import RegistrationOrchestrator, RegistrationResult
from .proof import build_proof
from .registry import get_registry
from .signing import generate_key, get_signer
from .storage import GatewayFetcher, get_storage_provider
from .verifier import VerificationEngine

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_NEGATIVE = 1
EXIT_ERROR = 2

_CREDENTIAL_PROMPTS = {
    "web3StorageToken": "web3.storage API token",
    "pinataJwt": "Pinata JWT",
    "infuraProjectId": "Infura project id",
    "infuraProjectSecret": "Infura project secret",
}


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


def load_config(args) -> ProvenanceConfig:
    """Config file, then environment, then command-line flags."""
    config = ProvenanceConfig.load(args.config)
    return config.with_overrides(
        private_key=getattr(args, "private_key", None),
        rpc_url=getattr(args, "rpc_url", None),
        registry_address=getattr(args, "registry", None),
        ipfs_provider=getattr(args, "ipfs_provider", None),
        chain=getattr(args, "chain", None),
    )


def build_orchestrator(config: ProvenanceConfig, use_journal: bool = True) -> RegistrationOrchestrator:
    config.require_signer()
    # Registry transactions are always signed locally, KMS signing included
    config.require("privateKey", "registryAddress")
    signer = get_signer(config.signer, config.private_key, config.kms_key_id, config.aws_region)
    storage = get_storage_provider(config)
    registry = get_registry(config)
    journal = RegistrationJournal(config.journal_path) if use_journal else None
    return RegistrationOrchestrator(signer, storage, registry, journal=journal)


def build_verifier(config: ProvenanceConfig) -> VerificationEngine:
    """Read-only engine; fetches through the public gateway unless an IPFS node API is configured."""
    fetcher = None
    if config.ipfs_api_url:
        try:
            fetcher = get_storage_provider(config)
        except ConfigError:
            logger.warning("Storage provider %s not usable for reads; using the gateway", config.ipfs_provider)
    if fetcher is None:
        fetcher = GatewayFetcher(config.ipfs_gateway, config.network_timeout_seconds)
    return VerificationEngine(fetcher, get_registry(config, with_sender=False))


def _prompt(label: str, current: Optional[str] = None, secret: bool = False) -> Optional[str]:
    suffix = " [set]" if secret and current else (f" [{current}]" if current else "")
    reader = getpass.getpass if secret else input
    value = reader(f"{label}{suffix}: ").strip()
    return value or current


def cmd_init(args) -> int:
    """Interactively write the local config file."""
    config = ProvenanceConfig.load(args.config)
    data = config.to_dict()

    data["apiUrl"] = _prompt("API base URL", data.get("apiUrl"))
    data["apiKey"] = _prompt("API key", data.get("apiKey"), secret=True)
    data["privateKey"] = _prompt("Creator private key (hex)", data.get("privateKey"), secret=True)
    data["chain"] = _prompt(f"Chain ({', '.join(SUPPORTED_CHAINS)})", data.get("chain") or DEFAULT_CHAIN)
    data["rpcUrl"] = _prompt("RPC URL (blank for the chain default)", data.get("rpcUrl"))
    data["registryAddress"] = _prompt("Registry contract address", data.get("registryAddress"))

    provider = _prompt(f"Storage provider ({', '.join(STORAGE_PROVIDERS)})", data.get("ipfsProvider") or "local")
    if provider not in STORAGE_PROVIDERS:
        raise ConfigError(["ipfsProvider"], f"Unsupported ipfsProvider {provider!r}")
    data["ipfsProvider"] = provider
    for key in PROVIDER_CREDENTIALS[provider]:
        data[key] = _prompt(_CREDENTIAL_PROMPTS[key], data.get(key), secret=True)
    if provider in ("local", "infura"):
        data["ipfsApiUrl"] = _prompt("IPFS API URL (blank for default)", data.get("ipfsApiUrl"))

    new_config = ProvenanceConfig.from_dict({k: v for k, v in data.items() if v})
    path = new_config.save(args.config)
    logger.info("Wrote config %s", json.dumps(sanitize_for_logging(new_config.to_dict())))
    print(f"Config saved to: {path}", file=sys.stderr)
    return EXIT_OK


def _run_registration(orchestrator: RegistrationOrchestrator, path: str, upload_content: bool) -> RegistrationResult:
    """Run in a worker so Ctrl-C cancels at the next step boundary instead of mid-request."""
    cancel = threading.Event()
    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(orchestrator.register, path, upload_content, cancel)
        while True:
            try:
                return future.result()
            except KeyboardInterrupt:
                cancel.set()
                print("Cancelling after the current step...", file=sys.stderr)


def cmd_upload(args) -> int:
    config = load_config(args)
    orchestrator = build_orchestrator(config, use_journal=not args.no_journal)
    result = _run_registration(orchestrator, args.file, args.upload_content)
    print_json(result.to_dict())
    if result.skipped_existing:
        print(f"Already registered (tx {result.tx_hash})", file=sys.stderr)
    else:
        print(f"Registered {result.content_hash}", file=sys.stderr)
    return EXIT_OK


def cmd_verify(args) -> int:
    config = load_config(args)
    verdict = build_verifier(config).verify(args.target, args.manifest)
    print_json(verdict.to_dict())
    return EXIT_OK if verdict.is_verified else EXIT_NEGATIVE


def cmd_proof(args) -> int:
    config = load_config(args)
    verdict = build_verifier(config).verify_file(args.file, args.manifest)
    chain = SUPPORTED_CHAINS.get(config.chain) if config.chain else None
    proof = build_proof(
        verdict,
        registry_address=config.registry_address,
        file_name=Path(args.file).name,
        chain=chain,
    )
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(proof, f, indent=2)
        print(f"Proof saved to: {args.output}", file=sys.stderr)
    else:
        print_json(proof)
    return EXIT_OK if verdict.is_verified else EXIT_NEGATIVE


def cmd_keygen(args) -> int:
    private_key, address = generate_key()
    print_json({"privateKey": private_key, "address": address})
    print("Store the private key securely; it cannot be recovered.", file=sys.stderr)
    return EXIT_OK


def _add_chain_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--rpc-url", help="JSON-RPC endpoint")
    p.add_argument("--registry", help="Registry contract address")
    p.add_argument("--chain", choices=sorted(SUPPORTED_CHAINS), help="Named chain (default RPC URL)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contentproof",
        description="Content provenance: register and verify signed manifests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  contentproof init
  contentproof upload sample.bin
  contentproof upload sample.bin --upload-content --ipfs-provider pinata
  contentproof verify sample.bin
  contentproof verify ipfs://bafy...
  contentproof proof sample.bin -o proof.json
        """
    )
    parser.add_argument("--config", help="Config file (default ~/.contentproof.json)")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default WARNING)")
    parser.add_argument("--plain-logs", action="store_true", help="Human-readable logs instead of JSON")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init", help="Configure credentials and settings")

    upload_parser = subparsers.add_parser("upload", help="Register a file")
    upload_parser.add_argument("file", help="Content file")
    upload_parser.add_argument("--upload-content", action="store_true",
                               help="Also publish the content and embed its URI (default: privacy mode)")
    upload_parser.add_argument("--private-key", help="Creator private key (hex)")
    upload_parser.add_argument("--ipfs-provider", choices=STORAGE_PROVIDERS, help="Storage provider")
    upload_parser.add_argument("--no-journal", action="store_true", help="Do not checkpoint or resume")
    _add_chain_args(upload_parser)

    verify_parser = subparsers.add_parser("verify", help="Verify a file or manifest URI")
    verify_parser.add_argument("target", help="Local file or manifest URI (ipfs://, https://)")
    verify_parser.add_argument("--manifest", help="Manifest URI to check a file against")
    _add_chain_args(verify_parser)

    proof_parser = subparsers.add_parser("proof", help="Build a shareable proof bundle for a file")
    proof_parser.add_argument("file", help="Content file")
    proof_parser.add_argument("--manifest", help="Manifest URI to check the file against")
    proof_parser.add_argument("-o", "--output", help="Output file for the proof")
    _add_chain_args(proof_parser)

    subparsers.add_parser("keygen", help="Generate a creator key")

    return parser


COMMANDS = {
    "init": cmd_init,
    "upload": cmd_upload,
    "verify": cmd_verify,
    "proof": cmd_proof,
    "keygen": cmd_keygen,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return EXIT_ERROR

    configure_logging(level=args.log_level, json_format=not args.plain_logs)
    set_request_id()

    try:
        return COMMANDS[args.command](args)
    except ProvenanceError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return EXIT_ERROR
    except HashReadError as e:
        print(json.dumps({"kind": "io", "message": str(e)}), file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
