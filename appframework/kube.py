"""Kubernetes API access: typed errors, resource requests and watches."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"
PROPAGATION_BACKGROUND = "Background"

_REQUEST_TIMEOUT = 30.0
_WATCH_SECONDS = 60
_RETRY_DELAY = 1.0

_log = logging.getLogger("k8sdynamic")


class ApiError(Exception):
    """The API server refused or failed a request."""

    def __init__(self, message: str, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(ApiError):
    """The requested object does not exist."""


class ConflictError(ApiError):
    """The object was changed by someone else; the request may be retried."""


def _error_for(status: int, message: str) -> ApiError:
    if status == 404:
        return NotFoundError(message, status)
    if status == 409:
        return ConflictError(message, status)
    return ApiError(message, status)


def _raise_for_status(response: requests.Response) -> None:
    if response.status_code < 400:
        return
    try:
        body = response.json()
        message = body.get("message") if isinstance(body, Mapping) else None
    except ValueError:
        message = None
    if not message:
        message = response.text or f"{response.status_code} {response.reason}"
    raise _error_for(response.status_code, message)


@dataclass(frozen=True)
class GroupVersionResource:
    """Identifies a resource type served by the API."""

    group: str = ""
    version: str = ""
    resource: str = ""

    @property
    def group_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def to_dict(self) -> dict[str, str]:
        out = {}
        if self.group:
            out["group"] = self.group
        if self.version:
            out["version"] = self.version
        if self.resource:
            out["resource"] = self.resource
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GroupVersionResource:
        return cls(
            group=data.get("group", "") or "",
            version=data.get("version", "") or "",
            resource=data.get("resource", "") or "",
        )


@dataclass(frozen=True)
class ApiResource:
    """A resource type as reported by API discovery."""

    name: str
    kind: str
    namespaced: bool = False
    verbs: tuple[str, ...] = ()

    @classmethod
    def _from_api(cls, data: Mapping[str, Any]) -> ApiResource:
        return cls(
            name=data.get("name", ""),
            kind=data.get("kind", ""),
            namespaced=bool(data.get("namespaced", False)),
            verbs=tuple(data.get("verbs") or ()),
        )


@dataclass
class ClusterConfig:
    """Where the API server is and how to authenticate to it."""

    host: str
    token: str = ""
    ca_file: str | None = None

    @classmethod
    def in_cluster(cls) -> ClusterConfig:
        """Build the configuration of a pod running inside the cluster."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST", "")
        port = os.environ.get("KUBERNETES_SERVICE_PORT", "")
        if not host or not port:
            raise RuntimeError(
                "unable to load in-cluster configuration, KUBERNETES_SERVICE_HOST "
                "and KUBERNETES_SERVICE_PORT must be defined"
            )
        with open(os.path.join(SERVICE_ACCOUNT_DIR, "token"), encoding="utf-8") as handle:
            token = handle.read().strip()
        ca_file = os.path.join(SERVICE_ACCOUNT_DIR, "ca.crt")
        if ":" in host:
            host = f"[{host}]"
        return cls(
            host=f"https://{host}:{port}",
            token=token,
            ca_file=ca_file if os.path.exists(ca_file) else None,
        )


@dataclass
class EventHandler:
    """Callbacks run by an informer for changes of watched objects."""

    on_add: Callable[[dict[str, Any]], Any] | None = None
    on_update: Callable[[dict[str, Any], dict[str, Any]], Any] | None = None
    on_delete: Callable[[dict[str, Any]], Any] | None = None

    def _add(self, obj: dict[str, Any]) -> None:
        if self.on_add is not None:
            self.on_add(obj)

    def _update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        if self.on_update is not None:
            self.on_update(old, new)

    def _delete(self, obj: dict[str, Any]) -> None:
        if self.on_delete is not None:
            self.on_delete(obj)


class KubeClient:
    """Generic client working on objects as plain dictionaries."""

    def __init__(self, config: ClusterConfig) -> None:
        self.config = config
        self._base = config.host.rstrip("/")
        self._session = requests.Session()
        self._session.headers["Accept"] = "application/json"
        if config.token:
            self._session.headers["Authorization"] = f"Bearer {config.token}"
        self._session.verify = config.ca_file if config.ca_file else True

    def _path(self, gvr: GroupVersionResource, namespace: str = "", name: str = "") -> str:
        if gvr.group:
            parts = [f"{self._base}/apis/{gvr.group}/{gvr.version}"]
        else:
            parts = [f"{self._base}/api/{gvr.version}"]
        if namespace:
            parts += ["namespaces", quote(namespace, safe="")]
        parts.append(gvr.resource)
        if name:
            parts.append(quote(name, safe=""))
        return "/".join(parts)

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = self._session.request(method, url, timeout=_REQUEST_TIMEOUT, **kwargs)
        _raise_for_status(response)
        if not response.content:
            return None
        return response.json()

    def get(self, gvr: GroupVersionResource, name: str, namespace: str = "") -> dict[str, Any]:
        """Return one object."""
        return self._request("GET", self._path(gvr, namespace, name))

    def create(
        self, gvr: GroupVersionResource, obj: Mapping[str, Any], namespace: str = ""
    ) -> dict[str, Any]:
        """Create ``obj`` and return the stored object."""
        return self._request("POST", self._path(gvr, namespace), json=obj)

    def update(
        self, gvr: GroupVersionResource, obj: Mapping[str, Any], namespace: str = ""
    ) -> dict[str, Any]:
        """Replace the stored object named in ``obj``'s metadata."""
        name = (obj.get("metadata") or {}).get("name", "")
        return self._request("PUT", self._path(gvr, namespace, name), json=obj)

    def merge_patch(
        self,
        gvr: GroupVersionResource,
        name: str,
        patch: Mapping[str, Any],
        namespace: str = "",
    ) -> dict[str, Any]:
        """Apply a JSON merge patch to an object."""
        return self._request(
            "PATCH",
            self._path(gvr, namespace, name),
            data=json.dumps(patch),
            headers={"Content-Type": "application/merge-patch+json"},
        )

    def delete(
        self,
        gvr: GroupVersionResource,
        name: str,
        namespace: str = "",
        grace_period_seconds: int | None = None,
        propagation_policy: str | None = None,
    ) -> None:
        """Delete an object."""
        options: dict[str, Any] = {"kind": "DeleteOptions", "apiVersion": "v1"}
        if grace_period_seconds is not None:
            options["gracePeriodSeconds"] = grace_period_seconds
        if propagation_policy is not None:
            options["propagationPolicy"] = propagation_policy
        self._request("DELETE", self._path(gvr, namespace, name), json=options)

    def _list(
        self,
        gvr: GroupVersionResource,
        namespace: str = "",
        label_selector: str = "",
        field_selector: str = "",
        resource_version: str = "",
    ) -> dict[str, Any]:
        params = {}
        if label_selector:
            params["labelSelector"] = label_selector
        if field_selector:
            params["fieldSelector"] = field_selector
        if resource_version:
            params["resourceVersion"] = resource_version
        return self._request("GET", self._path(gvr, namespace), params=params)

    def list(
        self,
        gvr: GroupVersionResource,
        namespace: str = "",
        label_selector: str = "",
        field_selector: str = "",
    ) -> dict[str, Any]:
        """Return the list object holding the matching items."""
        return self._list(gvr, namespace, label_selector, field_selector)

    def server_resources_for_group_version(self, group_version: str) -> list[ApiResource]:
        """Return the resource types served for ``group_version``."""
        if "/" in group_version:
            url = f"{self._base}/apis/{group_version}"
        else:
            url = f"{self._base}/api/{group_version}"
        body = self._request("GET", url) or {}
        return [ApiResource._from_api(item) for item in body.get("resources") or []]

    def watch(
        self,
        gvr: GroupVersionResource,
        namespace: str = "",
        field_selector: str = "",
        label_selector: str = "",
        resource_version: str = "",
        stop_event: threading.Event | None = None,
    ) -> Iterator[tuple[str, dict[str, Any]]]:
        """Yield ``(event type, object)`` pairs until the server ends the stream."""
        params = {"watch": "true", "timeoutSeconds": str(_WATCH_SECONDS)}
        if field_selector:
            params["fieldSelector"] = field_selector
        if label_selector:
            params["labelSelector"] = label_selector
        if resource_version:
            params["resourceVersion"] = resource_version
        with self._session.get(
            self._path(gvr, namespace),
            params=params,
            stream=True,
            timeout=(_REQUEST_TIMEOUT, _WATCH_SECONDS + _REQUEST_TIMEOUT),
        ) as response:
            _raise_for_status(response)
            for line in response.iter_lines():
                if stop_event is not None and stop_event.is_set():
                    return
                if not line:
                    continue
                event = json.loads(line)
                kind = event.get("type", "")
                obj = event.get("object") or {}
                if kind == "ERROR":
                    raise _error_for(int(obj.get("code", 0) or 0), obj.get("message", "watch error"))
                yield kind, obj


_shared_config: ClusterConfig | None = None


def get_kube_client() -> KubeClient:
    """Return a client for the cluster the process runs in."""
    global _shared_config
    if _shared_config is None:
        _shared_config = ClusterConfig.in_cluster()
    return KubeClient(_shared_config)


def _key(obj: Mapping[str, Any]) -> tuple[str, str]:
    meta = obj.get("metadata") or {}
    return meta.get("namespace", "") or "", meta.get("name", "") or ""


def _resource_version(obj: Mapping[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("resourceVersion", "") or ""


def _replace(store: dict[tuple[str, str], dict[str, Any]], items: list[dict[str, Any]], handler: EventHandler) -> None:
    fresh = {_key(item): item for item in items}
    for key, obj in fresh.items():
        old = store.get(key)
        if old is None:
            handler._add(obj)
        else:
            handler._update(old, obj)
    for key in [key for key in store if key not in fresh]:
        handler._delete(store[key])
    store.clear()
    store.update(fresh)


def _dispatch(store: dict[tuple[str, str], dict[str, Any]], kind: str, obj: dict[str, Any], handler: EventHandler) -> None:
    key = _key(obj)
    if kind in ("ADDED", "MODIFIED"):
        old = store.get(key)
        store[key] = obj
        if old is None:
            handler._add(obj)
        else:
            handler._update(old, obj)
    elif kind == "DELETED":
        store.pop(key, None)
        handler._delete(obj)


def watch_informer(
    client: KubeClient,
    name: str,
    namespace: str,
    resource_version: str,
    gvr: GroupVersionResource,
    handler: EventHandler,
    stop_event: threading.Event,
) -> None:
    """List and watch objects, running ``handler`` on changes until ``stop_event`` is set."""
    field_selector = f"metadata.name={name}" if name else ""
    store: dict[tuple[str, str], dict[str, Any]] = {}
    version = resource_version
    relist = True
    while not stop_event.is_set():
        try:
            if relist:
                listed = client._list(gvr, namespace, field_selector=field_selector, resource_version=version)
                _replace(store, list(listed.get("items") or []), handler)
                version = _resource_version(listed) or version
                relist = False
            for kind, obj in client.watch(
                gvr,
                namespace,
                field_selector=field_selector,
                resource_version=version,
                stop_event=stop_event,
            ):
                version = _resource_version(obj) or version
                _dispatch(store, kind, obj, handler)
                if stop_event.is_set():
                    break
        except (ApiError, requests.RequestException) as exc:
            _log.info("watch of %s interrupted: %s", gvr.resource, exc)
            relist = True
            stop_event.wait(_RETRY_DELAY)
    _log.info("resource watch has been stopped (resource=%s)", name)