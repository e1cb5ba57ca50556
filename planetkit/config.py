"""Container start configuration."""

from __future__ import annotations

import ipaddress
import posixpath
from dataclasses import dataclass, field
from typing import Optional, Union

from planetkit.flags import IPNetwork, parse_cidr

GRAVITY_DATA_DIR = "/var/lib/gravity"
MAX_POD_SUBNET_PREFIX = 28


class BadParameterError(ValueError):
    """Raised when a configuration parameter is invalid."""


@dataclass
class Mount:
    """A host directory mounted inside the container."""

    src: str
    dst: str
    readonly: bool = False


@dataclass
class DNS:
    """Local DNS server configuration."""

    hosts: dict[str, list[str]] = field(default_factory=dict)
    zones: dict[str, list[str]] = field(default_factory=dict)
    listen_addrs: list[str] = field(default_factory=list)
    port: int = 0


@dataclass
class Config:
    """Configuration for the container start operation."""

    roles: list[str] = field(default_factory=list)
    rootfs: str = ""
    public_ip: str = ""
    master_ip: str = ""
    cloud_provider: str = ""
    cluster_id: str = ""
    gce_node_tags: str = ""
    env: dict[str, str] = field(default_factory=dict)
    proxy_env: dict[str, str] = field(default_factory=dict)
    mounts: list[Mount] = field(default_factory=list)
    devices: list[object] = field(default_factory=list)
    files: list[object] = field(default_factory=list)
    ignore_checks: bool = False
    secrets_dir: str = ""
    docker_backend: str = ""
    docker_options: str = ""
    service_cidr: Optional[IPNetwork] = None
    pod_cidr: Optional[IPNetwork] = None
    pod_subnet_size: int = 0
    proxy_port_range: str = ""
    service_node_port_range: str = ""
    feature_gates: str = ""
    vxlan_port: int = 0
    initial_cluster: dict[str, str] = field(default_factory=dict)
    etcd_proxy: str = ""
    etcd_member_name: str = ""
    etcd_initial_cluster: str = ""
    etcd_gateway_list: str = ""
    etcd_initial_cluster_state: str = ""
    etcd_options: str = ""
    election_enabled: bool = False
    node_name: str = ""
    hostname: str = ""
    kubelet_options: str = ""
    apiserver_options: str = ""
    service_uid: str = ""
    service_gid: str = ""
    dns: DNS = field(default_factory=DNS)
    taints: list[str] = field(default_factory=list)
    node_labels: list[str] = field(default_factory=list)
    disable_flannel: bool = False
    kubelet_config: str = ""
    cloud_config: str = ""
    allow_privileged: bool = False
    selinux: bool = False
    high_availability: bool = False
    flannel_backend: str = ""

    def api_server_ip(self) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
        """Return the IP of the kubernetes service: the first IP of the service subnet."""
        if self.service_cidr is None:
            raise BadParameterError("service CIDR is not set")
        return self.service_cidr.network_address + 1

    def host_state_dir(self) -> str:
        """Return the host directory mounted as the gravity state directory."""
        for mount in self.mounts:
            if mount.dst == GRAVITY_DATA_DIR:
                return mount.src
        return GRAVITY_DATA_DIR

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def in_rootfs(self, *args: str) -> str:
        """Join the given path elements under the container's rootfs."""
        parts = [part for part in (self.rootfs, *args) if part]
        if not parts:
            return ""
        path = posixpath.normpath("/".join(parts))
        if path.startswith("//"):
            path = "/" + path.lstrip("/")
        return path


def verify_pod_subnet_size(subnet_size: int, cidr: Union[str, IPNetwork]) -> None:
    """Check that the per-host subnet size fits flannel and the pod network."""
    if subnet_size > MAX_POD_SUBNET_PREFIX:
        raise BadParameterError(
            "pod subnet is too small. Minimum useful network prefix is "
            f"/{MAX_POD_SUBNET_PREFIX} (pod-subnet-size={subnet_size})"
        )
    try:
        network = parse_cidr(str(cidr))
    except ValueError as err:
        raise BadParameterError(f"failed to parse cidr (pod-subnet={cidr})") from err
    if subnet_size < network.prefixlen:
        raise BadParameterError(
            "pod subnet size cannot be larger than the network CIDR range "
            f"(pod-subnet={cidr}, pod-subnet-size={subnet_size})"
        )


_KUBE_CONFIG = """apiVersion: v1
kind: Config
current-context: default
clusters:
- name: default
  cluster:
    certificate-authority: {state_dir}/secrets/root.cert
    server: https://{ip}
users:
- name: default
  user:
    client-certificate: {state_dir}/secrets/kubectl.cert
    client-key: {state_dir}/secrets/kubectl.key
contexts:
- name: default
  context:
    cluster: default
    user: default
    namespace: default"""


def new_kube_config(ip: object, state_dir: str) -> bytes:
    """Return a kubectl configuration for the given API server IP."""
    return _KUBE_CONFIG.format(ip=ip, state_dir=state_dir).encode("utf-8")