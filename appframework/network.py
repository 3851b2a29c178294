"""Addresses of the application's workloads on its private network."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from appframework.kube import ApiError, GroupVersionResource, KubeClient
from appframework.reconciler import PNA_GROUP, PNA_RESOURCE_NAME, PNA_VERSION

PRIVATE_NETWORK_ROUTING_CONTAINER_NAME = "appfw-private-network-routing"
NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"

_DUMMY_IP = re.compile(
    r"ip\s*link\s*add\s*name\s*.*?\s*type\s*dummy\s*&&\s*ip\s*addr\s*add\s*"
    r"(?P<customerIP>.*?)/32"
)

_log = logging.getLogger("handlers")


class DeploymentType(str, Enum):
    """Kinds of workload whose addresses can be looked up."""

    DEPLOYMENT = "deployments"
    STATEFULSET = "statefulsets"
    DAEMONSET = "deamonsets"


@dataclass(frozen=True)
class DeploymentId:
    """Names one workload of the application."""

    deployment_type: DeploymentType
    name: str

    @property
    def key(self) -> str:
        return f"{DeploymentType(self.deployment_type).value}/{self.name}"

    @property
    def gvr(self) -> GroupVersionResource:
        return GroupVersionResource("apps", "v1", DeploymentType(self.deployment_type).value)


def _nested(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, Mapping) or key not in obj:
            return None
        obj = obj[key]
    return obj


def dummy_interface_address(args: str | Sequence[Any]) -> str | None:
    """Return the address a routing init container assigns to its dummy interface.

    ``args`` is either the container's argument list, of which the first item
    is examined, or that first argument itself.
    """
    if isinstance(args, str):
        command = args
    elif isinstance(args, Sequence) and args and isinstance(args[0], str):
        command = args[0]
    else:
        return None
    match = _DUMMY_IP.search(command)
    return match.group("customerIP") if match else None


def _addresses_of_pna_defined_interfaces(
    kube: KubeClient,
    namespace: str,
    deployments: Iterable[DeploymentId],
    pna_network_name: str,
) -> dict[str, str]:
    _log.debug("Read address of interface defined in PNA")
    addresses: dict[str, str] = {}
    for deployment in deployments:
        try:
            obj = kube.get(deployment.gvr, deployment.name, namespace)
        except ApiError as exc:
            _log.error("Failed to get the deployment %s: %s", deployment.key, exc)
            break
        value = _nested(obj, "spec", "template", "metadata", "annotations", NETWORKS_ANNOTATION)
        if not isinstance(value, str):
            _log.error("Failed to get the assigned IP from the deployment %s", deployment.key)
            break
        try:
            elements = json.loads(value)
        except ValueError as exc:
            _log.error("Failed to parse the network annotation of %s: %s", deployment.key, exc)
            break
        if not isinstance(elements, list):
            _log.error("Failed to parse the network annotation of %s", deployment.key)
            break
        for element in elements:
            if not isinstance(element, Mapping) or element.get("name") != pna_network_name:
                continue
            ips = element.get("ips") or []
            if ips:
                addresses[deployment.key] = ips[0]
    return addresses


def _address_of_dummy_interface(
    kube: KubeClient, namespace: str, deployments: Iterable[DeploymentId]
) -> dict[str, str]:
    addresses: dict[str, str] = {}
    for deployment in deployments:
        try:
            obj = kube.get(deployment.gvr, deployment.name, namespace)
        except ApiError as exc:
            _log.error("Failed to get the deployment %s: %s", deployment.key, exc)
            break
        init_containers = _nested(obj, "spec", "template", "spec", "initContainers")
        if not isinstance(init_containers, list):
            _log.error("Failed to read initContainers of %s", deployment.key)
            break
        for container in init_containers:
            if not isinstance(container, Mapping):
                continue
            _log.info("name:%s", container.get("name"))
            if container.get("name") != PRIVATE_NETWORK_ROUTING_CONTAINER_NAME:
                continue
            args = container.get("args")
            if args is None or args == "":
                _log.error("Failed to read init container args of %s", deployment.key)
                continue
            address = dummy_interface_address(args)
            if address is not None:
                _log.info("Found IP to use from dummy interface %s", address)
                addresses[deployment.key] = address
    return addresses


def private_network_ip_addresses(
    kube: KubeClient,
    namespace: str,
    pna_name: str,
    deployments: Iterable[DeploymentId],
) -> dict[str, str] | None:
    """Map ``type/name`` of each workload to its private network address.

    Returns ``None`` when the private network access resource cannot be read.
    """
    deployments = list(deployments)
    pna_gvr = GroupVersionResource(PNA_GROUP, PNA_VERSION, PNA_RESOURCE_NAME)
    try:
        pna = kube.get(pna_gvr, pna_name, namespace)
    except ApiError as exc:
        _log.error("Failed to get the PrivateNetworkAccess CR: %s", exc)
        return None

    assigned = _nested(pna, "status", "assignedNetwork")
    if isinstance(assigned, Mapping) and all(isinstance(v, str) for v in assigned.values()):
        _log.debug("Assigned network found in status, using dummy interface")
        return _address_of_dummy_interface(kube, namespace, deployments)

    network_name = _nested(pna, "status", "appNetworkName")
    if not isinstance(network_name, str):
        _log.error("Failed to get the interface name in the PrivateNetworkAccess CR")
        return None
    return _addresses_of_pna_defined_interfaces(kube, namespace, deployments, network_name)