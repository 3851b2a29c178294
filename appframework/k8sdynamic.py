"""Applying and deleting resources described in YAML."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

from appframework.kube import (
    PROPAGATION_BACKGROUND,
    ApiError,
    ApiResource,
    GroupVersionResource,
    KubeClient,
)

SERVICE_KIND = "Service"
RESOURCE_SEPARATOR = "---"

_COMMENT = re.compile(r"#.*$", re.MULTILINE)
_log = logging.getLogger("k8sdynamic")


@dataclass(frozen=True)
class GroupVersionKind:
    """Group, version and kind of an object."""

    group: str = ""
    version: str = ""
    kind: str = ""

    @property
    def group_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @classmethod
    def of(cls, obj: Mapping[str, Any]) -> GroupVersionKind:
        """Read the kind of ``obj`` from its ``apiVersion`` and ``kind`` fields."""
        group, _, version = (obj.get("apiVersion", "") or "").rpartition("/")
        return cls(group=group, version=version, kind=obj.get("kind", "") or "")


@dataclass
class ResourceDescriptor:
    """Where an applied resource lives, so it can be found again."""

    name: str = ""
    namespace: str = ""
    gvr: GroupVersionResource = field(default_factory=GroupVersionResource)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.name:
            out["name"] = self.name
        if self.namespace:
            out["namespace"] = self.namespace
        out["gvr"] = self.gvr.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResourceDescriptor:
        return cls(
            name=data.get("name", "") or "",
            namespace=data.get("namespace", "") or "",
            gvr=GroupVersionResource.from_dict(data.get("gvr") or {}),
        )


def split_to_individual_resources(text: str) -> list[str]:
    """Split concatenated YAML documents at every separator."""
    return text.split(RESOURCE_SEPARATOR)


def remove_commented_parts(text: str) -> str:
    """Drop everything from a ``#`` to the end of its line."""
    return _COMMENT.sub("", text)


def yaml_to_object(text: str) -> dict[str, Any]:
    """Parse one YAML document into a JSON-compatible mapping."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to convert yaml resource to json: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError("failed to convert json to map struct")
    return json.loads(json.dumps(data, default=str))


class DynamicClient:
    """Applies arbitrary resources through a generic API client."""

    def __init__(self, client: KubeClient) -> None:
        self.client = client

    def api_resource_for(self, gvk: GroupVersionKind) -> ApiResource:
        """Find the served resource type of ``gvk``."""
        if not gvk.version or not gvk.kind:
            raise ValueError("empty input parameters")
        for resource in self.client.server_resources_for_group_version(gvk.group_version):
            if resource.kind == gvk.kind:
                return resource
        raise LookupError("not found")

    def apply_concatenated_resources(self, resources: str, namespace: str) -> list[ResourceDescriptor]:
        """Apply every document of a ``---`` separated YAML stream, in order."""
        descriptors = []
        for document in split_to_individual_resources(resources):
            document = remove_commented_parts(document).strip("\n")
            if not document:
                continue
            _log.debug("Resource to apply: %s", document)
            descriptors.append(self.apply_yaml_resource(document, namespace))
        return descriptors

    def apply_yaml_resource(self, resource: str, namespace: str) -> ResourceDescriptor:
        """Create or update the resource described by one YAML document."""
        return self._apply_resource(yaml_to_object(resource), namespace)

    def _apply_resource(self, obj: dict[str, Any], namespace: str) -> ResourceDescriptor:
        gvk = GroupVersionKind.of(obj)
        try:
            api_resource = self.api_resource_for(gvk)
        except (ValueError, LookupError, ApiError) as exc:
            raise LookupError(f"failed to find the resource by gvk: {exc}") from exc

        gvr = GroupVersionResource(gvk.group, gvk.version, api_resource.name)
        _log.info("GVR of the resource: %s", gvr)
        metadata = obj.setdefault("metadata", {})
        name = metadata.get("name", "") or ""
        target_namespace = namespace if api_resource.namespaced else ""
        descriptor = ResourceDescriptor(name=name, namespace=target_namespace, gvr=gvr)

        try:
            try:
                current = self.client.get(gvr, name, target_namespace)
            except ApiError:
                _log.info("resource doesn't exist, create it")
                self.client.create(gvr, obj, target_namespace)
            else:
                _log.info("resource already exist, update it")
                metadata["resourceVersion"] = (current.get("metadata") or {}).get("resourceVersion", "")
                if gvk.kind == SERVICE_KIND:
                    self.client.merge_patch(gvr, name, obj, target_namespace)
                else:
                    self.client.update(gvr, obj, target_namespace)
        except ApiError as exc:
            raise ApiError(f"failed to apply the given resource: {exc}", exc.status) from exc
        return descriptor

    def delete_resources(self, resources: Iterable[ResourceDescriptor]) -> None:
        """Delete every described resource that still exists."""
        for resource in resources:
            _log.info("resourceDescriptor: %s", resource)
            try:
                self.client.get(resource.gvr, resource.name, resource.namespace)
            except ApiError:
                _log.info("resource doesn't exist")
                continue
            self.client.delete(
                resource.gvr,
                resource.name,
                resource.namespace,
                grace_period_seconds=0,
                propagation_policy=PROPAGATION_BACKGROUND,
            )