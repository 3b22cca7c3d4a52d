"""
Configuration loading and requirement checks.
"""

import json
import os
import stat

import pytest

from contentproof.config import ProvenanceConfig
from contentproof.errors import ConfigError


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_missing_file_gives_defaults(tmp_path):
    config = ProvenanceConfig.load(str(tmp_path / "absent.json"), environ={})
    assert config.ipfs_provider == "local"
    assert config.signer == "local"
    assert config.private_key is None


def test_environment_overrides_file(tmp_path):
    path = _write(tmp_path / "cfg.json", {
        "rpcUrl": "http://file-rpc",
        "registryAddress": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "ipfsProvider": "pinata",
    })
    config = ProvenanceConfig.load(str(path), environ={
        "CONTENTPROOF_RPC_URL": "http://env-rpc",
        "PINATA_JWT": "jwt-env",
    })
    assert config.rpc_url == "http://env-rpc"
    assert config.pinata_jwt == "jwt-env"
    assert config.ipfs_provider == "pinata"


def test_config_path_from_environment(tmp_path):
    path = _write(tmp_path / "other.json", {"chain": "polygonAmoy"})
    config = ProvenanceConfig.load(environ={"CONTENTPROOF_CONFIG": str(path)})
    assert config.chain == "polygonAmoy"


def test_flags_override_everything():
    config = ProvenanceConfig(rpc_url="http://a").with_overrides(rpc_url="http://b", chain=None, bogus=1)
    assert config.rpc_url == "http://b"
    assert config.chain is None


def test_unknown_keys_are_preserved(tmp_path):
    path = _write(tmp_path / "cfg.json", {"apiUrl": "https://api.example", "theme": "dark"})
    config = ProvenanceConfig.load(str(path), environ={})
    assert config.extra == {"theme": "dark"}
    assert config.to_dict() == {"apiUrl": "https://api.example", "theme": "dark"}


def test_start_block_is_coerced(tmp_path):
    config = ProvenanceConfig.load(
        str(tmp_path / "absent.json"),
        environ={"CONTENTPROOF_REGISTRY_START_BLOCK": "1200"},
    )
    assert config.registry_start_block == 1200
    with pytest.raises(ConfigError):
        ProvenanceConfig.from_dict({"registryStartBlock": "soon"})


def test_invalid_json_file(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(ConfigError):
        ProvenanceConfig.load(str(path), environ={})


def test_non_object_file(tmp_path):
    path = _write(tmp_path / "cfg.json", ["a", "b"])
    with pytest.raises(ConfigError):
        ProvenanceConfig.load(str(path), environ={})


def test_require_names_all_missing_keys():
    with pytest.raises(ConfigError) as exc:
        ProvenanceConfig(rpc_url="http://rpc").require("privateKey", "rpcUrl", "registryAddress")
    assert exc.value.missing == ["privateKey", "registryAddress"]
    assert exc.value.to_dict()["kind"] == "config"


def test_require_storage_credentials():
    with pytest.raises(ConfigError) as exc:
        ProvenanceConfig(ipfs_provider="web3storage").require_storage()
    assert exc.value.missing == ["web3StorageToken"]
    ProvenanceConfig(ipfs_provider="local").require_storage()


def test_require_signer():
    with pytest.raises(ConfigError) as exc:
        ProvenanceConfig(signer="aws_kms").require_signer()
    assert exc.value.missing == ["kmsKeyId"]
    with pytest.raises(ConfigError) as exc:
        ProvenanceConfig().require_signer()
    assert exc.value.missing == ["privateKey"]


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_save_restricts_permissions(tmp_path):
    config = ProvenanceConfig(private_key="0xabc", rpc_url="http://rpc")
    path = config.save(str(tmp_path / "cfg.json"))
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    reloaded = ProvenanceConfig.load(str(path), environ={})
    assert reloaded == config
