import ipaddress

import pytest
import yaml

from planetkit.config import (
    BadParameterError,
    Config,
    Mount,
    new_kube_config,
    verify_pod_subnet_size,
)


def test_api_server_ip_is_first_ip_of_service_subnet():
    cfg = Config(service_cidr=ipaddress.ip_network("10.100.0.0/16"))
    assert str(cfg.api_server_ip()) == "10.100.0.1"
    assert cfg.api_server_ip() in cfg.service_cidr


def test_api_server_ip_requires_cidr():
    with pytest.raises(BadParameterError):
        Config().api_server_ip()


def test_host_state_dir_from_mount():
    cfg = Config(mounts=[Mount(src="/opt/state", dst="/var/lib/gravity")])
    assert cfg.host_state_dir() == "/opt/state"


def test_host_state_dir_default():
    cfg = Config(mounts=[Mount(src="/a", dst="/b")])
    assert cfg.host_state_dir() == "/var/lib/gravity"


def test_has_role():
    cfg = Config(roles=["master", "node"])
    assert cfg.has_role("master") is True
    assert cfg.has_role("worker") is False


def test_in_rootfs_joins_paths():
    cfg = Config(rootfs="/rootfs")
    assert cfg.in_rootfs("etc", "hosts") == "/rootfs/etc/hosts"
    assert cfg.in_rootfs("/etc/", "/hosts") == "/rootfs/etc/hosts"
    assert cfg.in_rootfs() == "/rootfs"


def test_verify_pod_subnet_size_accepts_valid():
    verify_pod_subnet_size(24, "10.244.0.0/16")
    verify_pod_subnet_size(28, ipaddress.ip_network("10.244.0.0/16"))
    with pytest.raises(BadParameterError):
        verify_pod_subnet_size(15, "10.244.0.0/16")


def test_verify_pod_subnet_size_too_small():
    with pytest.raises(BadParameterError, match="too small"):
        verify_pod_subnet_size(29, "10.244.0.0/16")


def test_verify_pod_subnet_size_bad_cidr():
    with pytest.raises(BadParameterError, match="failed to parse cidr"):
        verify_pod_subnet_size(24, "not-a-cidr")


def test_new_kube_config_is_valid_yaml():
    data = new_kube_config(ipaddress.ip_address("10.0.0.1"), "/var/state")
    doc = yaml.safe_load(data)
    cluster = doc["clusters"][0]["cluster"]
    assert cluster["server"] == "https://10.0.0.1"
    assert cluster["certificate-authority"] == "/var/state/secrets/root.cert"
    user = doc["users"][0]["user"]
    assert user["client-key"] == "/var/state/secrets/kubectl.key"
    assert doc["current-context"] == "default"
    assert not data.endswith(b"\n")