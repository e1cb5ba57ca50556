"""Kubernetes DNS service objects and helpers to select and validate them."""

from __future__ import annotations

import ipaddress
import logging
from typing import Any, Iterable, Mapping, Optional, Union

from planetkit.flags import IPNetwork, parse_cidr

log = logging.getLogger(__name__)

NAMESPACE_SYSTEM = "kube-system"
CLUSTER_IP_FIELD = "spec.clusterIP"
IP_ALREADY_ALLOCATED = "provided IP is already allocated"


class DNSServiceNotFoundError(LookupError):
    """Raised when no service matches the DNS service criteria."""


def new_dns_service(name: str, cluster_ip: str) -> dict[str, Any]:
    """Return a placeholder DNS service object with the given cluster IP."""
    return {
        "metadata": {
            "name": name,
            "namespace": NAMESPACE_SYSTEM,
            "labels": {
                "k8s-app": name,
                "kubernetes.io/cluster-service": "true",
                "kubernetes.io/name": "KubeDNS",
            },
            "resourceVersion": "0",
        },
        "spec": {
            "selector": {"k8s-app": name},
            "ports": [
                {"name": "dns", "port": 53, "targetPort": "dns", "protocol": "UDP"},
                {"name": "dns-tcp", "port": 53, "targetPort": "dns-tcp", "protocol": "TCP"},
            ],
            "sessionAffinity": "None",
            "clusterIP": cluster_ip,
        },
    }


def _parse_ip(text: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        addr = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def get_dns_service(
    services: Iterable[Mapping[str, Any]],
    service_cidr: Union[str, IPNetwork],
) -> Mapping[str, Any]:
    """Return the first service whose cluster IP lies within ``service_cidr``."""
    network = parse_cidr(service_cidr) if isinstance(service_cidr, str) else service_cidr
    for service in services:
        metadata = service.get("metadata") or {}
        name = f"{metadata.get('namespace', '')}/{metadata.get('name', '')}"
        cluster_ip = (service.get("spec") or {}).get("clusterIP", "")
        if not cluster_ip:
            log.warning("Service %s does not have ClusterIP - will skip.", name)
            continue
        addr = _parse_ip(cluster_ip)
        if addr is None:
            log.warning("Service %s has invalid ClusterIP %s - will skip.", name, cluster_ip)
            continue
        if addr not in network:
            log.warning(
                "Service %s has ClusterIP %s not from service CIDR %s.", name, cluster_ip, network
            )
            continue
        return service
    raise DNSServiceNotFoundError("no DNS service matched")


def status_has_cause(status: Mapping[str, Any], field: str, message_pattern: str) -> bool:
    """Tell whether the status details name a cause for ``field`` with the message."""
    details = status.get("details")
    if not details:
        return False
    return any(
        cause.get("field") == field and message_pattern in cause.get("message", "")
        for cause in details.get("causes") or ()
    )


def is_ip_already_allocated_error(status: Mapping[str, Any]) -> bool:
    """Tell whether an API status reports that the cluster IP is already allocated."""
    return status.get("status") == "Failure" and status_has_cause(
        status, CLUSTER_IP_FIELD, IP_ALREADY_ALLOCATED
    )