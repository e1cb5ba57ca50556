import ipaddress

import pytest

from planetkit.dns_service import (
    DNSServiceNotFoundError,
    get_dns_service,
    is_ip_already_allocated_error,
    new_dns_service,
    status_has_cause,
)


def _service(name, cluster_ip):
    return {"metadata": {"name": name, "namespace": "kube-system"}, "spec": {"clusterIP": cluster_ip}}


def test_new_dns_service_metadata():
    svc = new_dns_service("kube-dns", "10.100.0.4")
    assert svc["metadata"]["name"] == "kube-dns"
    assert svc["metadata"]["namespace"] == "kube-system"
    assert svc["metadata"]["labels"] == {
        "k8s-app": "kube-dns",
        "kubernetes.io/cluster-service": "true",
        "kubernetes.io/name": "KubeDNS",
    }
    assert svc["metadata"]["resourceVersion"] == "0"


def test_new_dns_service_spec():
    spec = new_dns_service("kube-dns-worker", "10.100.0.5")["spec"]
    assert spec["clusterIP"] == "10.100.0.5"
    assert spec["selector"] == {"k8s-app": "kube-dns-worker"}
    assert spec["sessionAffinity"] == "None"
    assert [(p["name"], p["port"], p["protocol"], p["targetPort"]) for p in spec["ports"]] == [
        ("dns", 53, "UDP", "dns"),
        ("dns-tcp", 53, "TCP", "dns-tcp"),
    ]


def test_get_dns_service_skips_invalid_entries():
    services = [
        _service("empty", ""),
        _service("garbage", "not-an-ip"),
        _service("outside", "192.168.1.1"),
        _service("inside", "10.100.0.4"),
        _service("later", "10.100.0.5"),
    ]
    found = get_dns_service(services, "10.100.0.0/16")
    assert found["metadata"]["name"] == "inside"


def test_get_dns_service_accepts_network_object():
    services = [_service("a", "10.100.0.4")]
    found = get_dns_service(services, ipaddress.ip_network("10.100.0.0/16"))
    assert found is services[0]


def test_get_dns_service_not_found():
    with pytest.raises(DNSServiceNotFoundError, match="no DNS service matched"):
        get_dns_service([_service("outside", "192.168.1.1")], "10.100.0.0/16")


def test_get_dns_service_empty_list():
    with pytest.raises(LookupError):
        get_dns_service([], "10.100.0.0/16")


def test_round_trip_new_service_is_found():
    svc = new_dns_service("kube-dns", "10.100.0.4")
    assert get_dns_service([svc], "10.100.0.0/16") is svc


def _status(status, causes):
    return {"status": status, "details": {"causes": causes}}


def test_ip_already_allocated_detected():
    status = _status(
        "Failure",
        [{"field": "spec.clusterIP", "message": "Invalid value: provided IP is already allocated"}],
    )
    assert is_ip_already_allocated_error(status) is True


def test_ip_already_allocated_requires_failure():
    status = _status(
        "Success", [{"field": "spec.clusterIP", "message": "provided IP is already allocated"}]
    )
    assert is_ip_already_allocated_error(status) is False


def test_ip_already_allocated_requires_field():
    status = _status("Failure", [{"field": "spec.ports", "message": "provided IP is already allocated"}])
    assert is_ip_already_allocated_error(status) is False


def test_status_has_cause_without_details():
    assert status_has_cause({"status": "Failure"}, "spec.clusterIP", "x") is False
    assert status_has_cause({"details": None}, "spec.clusterIP", "x") is False


def test_status_has_cause_matches_substring():
    status = _status("Failure", [{"field": "f", "message": "abc def ghi"}])
    assert status_has_cause(status, "f", "def") is True
    assert status_has_cause(status, "f", "xyz") is False