"""
Command line interface: exit codes and output.
"""

import json

import pytest

from contentproof import cli
from contentproof.config import ProvenanceConfig
from contentproof.storage import GatewayFetcher, LocalNodeProvider
from contentproof.verifier import VerificationEngine

from conftest import SAMPLE_BYTES


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "registryAddress": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "chain": "baseSepolia",
    }), encoding="utf-8")
    return path


@pytest.fixture
def wired(monkeypatch, orchestrator, storage, registry):
    monkeypatch.setattr(cli, "build_orchestrator", lambda config, use_journal=True: orchestrator)
    monkeypatch.setattr(cli, "build_verifier", lambda config: VerificationEngine(storage, registry))
    return orchestrator


def run(config_path, *argv):
    return cli.main(["--config", str(config_path), "--log-level", "ERROR", *argv])


def test_upload_prints_result(wired, config_path, sample_file, capsys):
    assert run(config_path, "upload", str(sample_file)) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["contentHash"].startswith("0x")
    assert out["manifestUri"].startswith("ipfs://")
    assert out["skippedExisting"] is False


def test_second_upload_reports_existing(wired, config_path, sample_file, capsys):
    run(config_path, "upload", str(sample_file))
    capsys.readouterr()
    assert run(config_path, "upload", str(sample_file)) == 0
    captured = capsys.readouterr()
    assert json.loads(captured.out)["skippedExisting"] is True
    assert "Already registered" in captured.err


def test_verify_registered_file(wired, config_path, sample_file, capsys):
    run(config_path, "upload", str(sample_file))
    capsys.readouterr()
    assert run(config_path, "verify", str(sample_file)) == 0
    assert json.loads(capsys.readouterr().out)["status"] == "verified"


def test_verify_unregistered_file_exits_1(wired, config_path, tmp_path, capsys):
    other = tmp_path / "other.bin"
    other.write_bytes(SAMPLE_BYTES + b"x")
    assert run(config_path, "verify", str(other)) == 1
    assert json.loads(capsys.readouterr().out)["status"] == "not_registered"


def test_proof_written_to_file(wired, config_path, sample_file, tmp_path, capsys):
    run(config_path, "upload", str(sample_file))
    output = tmp_path / "proof.json"
    assert run(config_path, "proof", str(sample_file), "-o", str(output)) == 0
    proof = json.loads(output.read_text(encoding="utf-8"))
    assert proof["status"] == "verified"
    assert proof["content"]["fileName"] == "sample.bin"
    assert proof["network"]["name"] == "baseSepolia"
    assert proof["registryAddress"] == "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def test_missing_file_is_io_error(wired, config_path, tmp_path, capsys):
    assert run(config_path, "verify", str(tmp_path / "missing.bin")) == 2
    err = capsys.readouterr().err.strip().splitlines()[-1]
    assert json.loads(err)["kind"] == "io"


def test_missing_configuration_exits_2(config_path, sample_file, capsys, monkeypatch):
    monkeypatch.delenv("CONTENTPROOF_PRIVATE_KEY", raising=False)
    assert run(config_path, "upload", str(sample_file)) == 2
    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err["kind"] == "config"
    assert "privateKey" in err["missing"]


def test_kms_signer_still_needs_sending_key(tmp_path, sample_file, capsys, monkeypatch):
    monkeypatch.delenv("CONTENTPROOF_PRIVATE_KEY", raising=False)
    path = tmp_path / "kms.json"
    path.write_text(json.dumps({
        "registryAddress": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "signer": "aws_kms",
        "kmsKeyId": "alias/creator",
    }), encoding="utf-8")
    assert run(path, "upload", str(sample_file)) == 2
    err = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert err["kind"] == "config"
    assert err["missing"] == ["privateKey"]


def test_keygen(config_path, capsys):
    assert run(config_path, "keygen") == 0
    out = json.loads(capsys.readouterr().out)
    assert out["privateKey"].startswith("0x")
    assert len(out["address"]) == 42


def test_init_writes_config(tmp_path, monkeypatch, capsys):
    path = tmp_path / "new.json"
    answers = iter([
        "https://api.example",                          # API base URL
        "baseSepolia",                                  # chain
        "",                                             # RPC URL
        "0x5FbDB2315678afecb367f032d93F642f64180aa3",   # registry
        "pinata",                                       # storage provider
    ])
    secrets = iter(["api-key", "0x" + "11" * 32, "jwt-token"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(secrets))

    assert cli.main(["--config", str(path), "--log-level", "ERROR", "init"]) == 0
    saved = ProvenanceConfig.load(str(path), environ={})
    assert saved.api_url == "https://api.example"
    assert saved.pinata_jwt == "jwt-token"
    assert saved.ipfs_provider == "pinata"
    assert saved.rpc_url is None


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 2


def test_verifier_reads_through_gateway_by_default():
    config = ProvenanceConfig(
        rpc_url="http://127.0.0.1:8545",
        registry_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        ipfs_gateway="https://gw.example/ipfs/",
    )
    engine = cli.build_verifier(config)
    assert isinstance(engine.fetcher, GatewayFetcher)
    assert engine.fetcher.gateway == "https://gw.example/ipfs/"
    assert engine.registry.sender_address is None


def test_verifier_uses_configured_node():
    config = ProvenanceConfig(
        rpc_url="http://127.0.0.1:8545",
        registry_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        ipfs_api_url="http://ipfs:5001",
    )
    assert isinstance(cli.build_verifier(config).fetcher, LocalNodeProvider)
