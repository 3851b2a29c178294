"""Data types shared by the operator: custom resource, spec and status."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class AppStatus(str, Enum):
    """Running state of the application reported in the CR status."""

    NOT_SET = "UNSET"
    NOT_RUNNING = "NOT_RUNNING"
    RUNNING = "RUNNING"
    FROZEN = "FROZEN"


@dataclass
class ObjectMeta:
    """Kubernetes object metadata used by the operator."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    finalizers: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    deletion_timestamp: datetime | None = None


@dataclass
class Network:
    """A network the application gets access to."""

    apn_uuid: str = ""
    network_id: str = ""
    additional_routes: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Network:
        return cls(
            apn_uuid=data.get("apnUUID", "") or "",
            network_id=data.get("networkId", "") or "",
            additional_routes=list(data.get("additionalRoutes") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.apn_uuid:
            out["apnUUID"] = self.apn_uuid
        if self.network_id:
            out["networkId"] = self.network_id
        if self.additional_routes:
            out["additionalRoutes"] = list(self.additional_routes)
        return out

    def deep_copy(self) -> Network:
        return Network(self.apn_uuid, self.network_id, list(self.additional_routes))


@dataclass
class AppPodFixIp:
    """Fixed pod addresses of the application."""

    db: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AppPodFixIp:
        return cls(db=data.get("db", "") or "")

    def to_dict(self) -> dict[str, Any]:
        return {"db": self.db}

    def deep_copy(self) -> AppPodFixIp:
        return AppPodFixIp(self.db)


@dataclass
class PrivateNetworkAccess:
    """Private network settings requested by the application."""

    networks: list[Network] = field(default_factory=list)
    app_network: str = ""
    network_interface_name: str = ""
    app_pod_fix_ip: AppPodFixIp | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PrivateNetworkAccess:
        fix_ip = data.get("appPodFixIp")
        return cls(
            networks=[Network.from_dict(item) for item in data.get("networks") or []],
            app_network=data.get("appNetwork", "") or "",
            network_interface_name=data.get("networkInterfaceName", "") or "",
            app_pod_fix_ip=AppPodFixIp.from_dict(fix_ip) if fix_ip is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.networks:
            out["networks"] = [network.to_dict() for network in self.networks]
        out["appNetwork"] = self.app_network
        if self.network_interface_name:
            out["networkInterfaceName"] = self.network_interface_name
        if self.app_pod_fix_ip is not None:
            out["appPodFixIp"] = self.app_pod_fix_ip.to_dict()
        return out

    def deep_copy(self) -> PrivateNetworkAccess:
        return PrivateNetworkAccess(
            networks=[network.deep_copy() for network in self.networks],
            app_network=self.app_network,
            network_interface_name=self.network_interface_name,
            app_pod_fix_ip=self.app_pod_fix_ip.deep_copy() if self.app_pod_fix_ip else None,
        )


@dataclass
class OperatorSpec:
    """Base of an application's CR spec; applications subclass it."""

    private_network_access: PrivateNetworkAccess | None = None


@dataclass
class AppReportedData:
    """Data the operator reports back about the running application."""

    private_network_ip_addresses: dict[str, str] = field(default_factory=dict)


@dataclass
class OperatorStatus:
    """Status of an application CR."""

    app_status: AppStatus = AppStatus.NOT_SET
    applied_resources: list[Any] = field(default_factory=list)
    prev_spec: OperatorSpec | None = None
    app_reported_data: AppReportedData = field(default_factory=AppReportedData)

    def prev_spec_copy(self) -> OperatorSpec | None:
        """Return an independent copy of the previously applied spec."""
        return copy.deepcopy(self.prev_spec)


@dataclass
class OperatorCr:
    """An application custom resource handled by the operator."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: OperatorSpec = field(default_factory=OperatorSpec)
    status: OperatorStatus = field(default_factory=OperatorStatus)
    api_version: str = ""
    kind: str = ""

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


@runtime_checkable
class CrClient(Protocol):
    """Access to application CRs stored in the cluster."""

    def get(self, namespace: str, name: str) -> OperatorCr:
        """Return the current state of a CR; raise when it is missing."""
        ...

    def update(self, instance: OperatorCr) -> None:
        """Store the metadata and spec of ``instance``."""
        ...

    def update_status(self, instance: OperatorCr) -> None:
        """Store the status of ``instance``."""
        ...

    def delete_all_of(
        self,
        resource: str,
        namespace: str,
        labels: Mapping[str, str],
        grace_period_seconds: int,
        propagation_policy: str,
    ) -> None:
        """Delete every ``resource`` in ``namespace`` carrying ``labels``."""
        ...