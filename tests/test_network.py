import json

import pytest

from appframework.kube import ApiError, NotFoundError
from appframework.network import (
    PRIVATE_NETWORK_ROUTING_CONTAINER_NAME,
    DeploymentId,
    DeploymentType,
    dummy_interface_address,
    private_network_ip_addresses,
)

NS = "app-ns"
PNA = "app-pna"
DUMMY_CMD = "ip link add name dummy0 type dummy && ip addr add 10.1.2.3/32 dev dummy0"


class FakeKube:
    def __init__(self, objects, failing=()):
        self.objects = objects
        self.failing = set(failing)
        self.calls = []

    def get(self, gvr, name, namespace=""):
        self.calls.append((gvr.resource, name, namespace))
        if (gvr.resource, name) in self.failing:
            raise ApiError("boom", 500)
        try:
            return self.objects[(gvr.resource, name, namespace)]
        except KeyError:
            raise NotFoundError("not found", 404) from None


def pna_object(status):
    return {"metadata": {"name": PNA}, "status": status}


def annotated(networks):
    return {
        "spec": {
            "template": {
                "metadata": {"annotations": {"k8s.v1.cni.cncf.io/networks": json.dumps(networks)}}
            }
        }
    }


def with_init_containers(containers):
    return {"spec": {"template": {"spec": {"initContainers": containers}}}}


def test_dummy_interface_address_from_string():
    assert dummy_interface_address(DUMMY_CMD) == "10.1.2.3"


def test_dummy_interface_address_from_args_list():
    assert dummy_interface_address([DUMMY_CMD, "ignored"]) == "10.1.2.3"


@pytest.mark.parametrize("args", ["ip link show", [], [42]])
def test_dummy_interface_address_without_match(args):
    assert dummy_interface_address(args) is None


def test_deployment_id_key():
    assert DeploymentId(DeploymentType.STATEFULSET, "db").key == "statefulsets/db"


def test_missing_pna_returns_none():
    kube = FakeKube({})
    assert private_network_ip_addresses(kube, NS, PNA, []) is None


def test_pna_without_network_name_returns_none():
    kube = FakeKube({("privatenetworkaccesses", PNA, NS): pna_object({})})
    assert private_network_ip_addresses(kube, NS, PNA, []) is None


def test_addresses_from_network_annotation():
    objects = {
        ("privatenetworkaccesses", PNA, NS): pna_object({"appNetworkName": "net-a"}),
        ("statefulsets", "db", NS): annotated(
            [{"name": "other", "ips": ["192.0.2.9"]}, {"name": "net-a", "ips": ["192.0.2.7"]}]
        ),
        ("deployments", "web", NS): annotated([{"name": "net-a", "ips": ["192.0.2.8"]}]),
    }
    result = private_network_ip_addresses(
        FakeKube(objects),
        NS,
        PNA,
        [DeploymentId(DeploymentType.STATEFULSET, "db"), DeploymentId(DeploymentType.DEPLOYMENT, "web")],
    )
    assert result == {"statefulsets/db": "192.0.2.7", "deployments/web": "192.0.2.8"}


def test_annotation_lookup_stops_at_first_failure():
    objects = {
        ("privatenetworkaccesses", PNA, NS): pna_object({"appNetworkName": "net-a"}),
        ("deployments", "web", NS): annotated([{"name": "net-a", "ips": ["192.0.2.8"]}]),
        ("deployments", "late", NS): annotated([{"name": "net-a", "ips": ["192.0.2.9"]}]),
    }
    kube = FakeKube(objects, failing=[("deployments", "broken")])
    result = private_network_ip_addresses(
        kube,
        NS,
        PNA,
        [
            DeploymentId(DeploymentType.DEPLOYMENT, "web"),
            DeploymentId(DeploymentType.DEPLOYMENT, "broken"),
            DeploymentId(DeploymentType.DEPLOYMENT, "late"),
        ],
    )
    assert result == {"deployments/web": "192.0.2.8"}
    assert ("deployments", "late", NS) not in kube.calls


def test_addresses_from_dummy_interface():
    objects = {
        ("privatenetworkaccesses", PNA, NS): pna_object({"assignedNetwork": {"cidr": "10.1.0.0/16"}}),
        ("statefulsets", "db", NS): with_init_containers(
            [
                {"name": "setup", "args": ["echo hi"]},
                {"name": PRIVATE_NETWORK_ROUTING_CONTAINER_NAME, "args": [DUMMY_CMD]},
            ]
        ),
    }
    result = private_network_ip_addresses(
        FakeKube(objects), NS, PNA, [DeploymentId(DeploymentType.STATEFULSET, "db")]
    )
    assert result == {"statefulsets/db": "10.1.2.3"}


def test_dummy_interface_without_init_containers_gives_empty_map():
    objects = {
        ("privatenetworkaccesses", PNA, NS): pna_object({"assignedNetwork": {}}),
        ("statefulsets", "db", NS): {"spec": {"template": {"spec": {}}}},
    }
    result = private_network_ip_addresses(
        FakeKube(objects), NS, PNA, [DeploymentId(DeploymentType.STATEFULSET, "db")]
    )
    assert result == {}