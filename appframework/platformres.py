"""Platform resource requests and waiting for their approval."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from appframework.k8sdynamic import DynamicClient, ResourceDescriptor
from appframework.kube import ApiError, EventHandler, KubeClient, watch_informer

STATUS_FIELD = "status"
APPROVAL_STATUS_FIELD = "approvalStatus"
APPROVAL_STATUS_APPROVED = "Approved"
APPROVAL_STATUS_REJECTED = "Rejected"
PNA_REQUEST_FILE = "private-network-access.yaml"

_log = logging.getLogger("platformres")


class ResourceRequestError(Exception):
    """A platform resource request could not be applied or was not granted."""


def approval_status(obj: Any) -> str:
    """Return ``status.approvalStatus`` of ``obj``, or an empty string."""
    if not isinstance(obj, Mapping):
        return ""
    status = obj.get(STATUS_FIELD)
    if not isinstance(status, Mapping):
        return ""
    value = status.get(APPROVAL_STATUS_FIELD)
    return value if isinstance(value, str) else ""


def _apply(dyn: DynamicClient, content: str, namespace: str) -> ResourceDescriptor:
    try:
        return dyn.apply_yaml_resource(content, namespace)
    except (ApiError, LookupError, ValueError) as exc:
        raise ResourceRequestError(f"failed to apply the request in k8s: {exc}") from exc


def _read(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as handle:
            return handle.read()
    except OSError as exc:
        raise ResourceRequestError(f"failed to read file: {exc}") from exc


def apply_platform_resource_requests(
    client: KubeClient, namespace: str, resource_request_path: str
) -> list[ResourceDescriptor]:
    """Apply every non-empty request file of ``resource_request_path``, in name order."""
    _log.info("ApplyPlatformResourceRequests called")
    if not resource_request_path:
        raise ResourceRequestError("resReqDir is not set")
    dyn = DynamicClient(client)
    try:
        with os.scandir(resource_request_path) as scanner:
            entries = sorted(scanner, key=lambda entry: entry.name)
    except OSError as exc:
        raise ResourceRequestError(
            f"failed to read dir: {resource_request_path}: {exc}"
        ) from exc

    descriptors = []
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            continue
        content = _read(entry.path)
        if not content.strip():
            _log.info("File is empty skip it: %s", entry.path)
            continue
        descriptors.append(_apply(dyn, content, namespace))
    return descriptors


def apply_pna_resource_requests(
    client: KubeClient, namespace: str, resource_request_path: str
) -> list[ResourceDescriptor]:
    """Apply the private network access request of ``resource_request_path``."""
    _log.info("ApplyPnaResourceRequests called")
    if not resource_request_path:
        raise ResourceRequestError("resReqDir is not set")
    content = _read(resource_request_path + "/" + PNA_REQUEST_FILE)
    return [_apply(DynamicClient(client), content, namespace)]


@dataclass
class _PendingRequest:
    descriptor: ResourceDescriptor
    stop: threading.Event = field(default_factory=threading.Event)
    done: threading.Event = field(default_factory=threading.Event)
    granted: bool = False
    settled: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def finish(self, granted: bool, settled: bool) -> None:
        with self.lock:
            if self.done.is_set():
                return
            self.granted = granted
            self.settled = settled
            self.done.set()
            self.stop.set()

    def handler(self) -> EventHandler:
        name = self.descriptor.name

        def on_add(obj: dict[str, Any]) -> None:
            _log.debug("Add resource detected: %s", name)
            if approval_status(obj) == APPROVAL_STATUS_APPROVED:
                self.finish(True, settled=True)

        def on_update(old: dict[str, Any], new: dict[str, Any]) -> None:
            _log.debug("Resource request modification detected: %s", name)
            new_value = approval_status(new)
            if approval_status(old) != new_value:
                granted = new_value == APPROVAL_STATUS_APPROVED
                _log.info("Resource %s: %s", "approved" if granted else "cannot be created", name)
                self.finish(granted, settled=True)

        def on_delete(obj: dict[str, Any]) -> None:
            _log.debug("Delete resource detected: %s", name)
            self.finish(False, settled=False)

        return EventHandler(on_add=on_add, on_update=on_update, on_delete=on_delete)


def wait_until_resources_granted(
    client: KubeClient, resources: Iterable[ResourceDescriptor], timeout: float
) -> None:
    """Block until every request is decided; raise unless all were approved.

    ``timeout`` is in seconds and bounds the whole wait.
    """
    pending = [_PendingRequest(resource) for resource in resources]
    for request in pending:
        _log.info("Watching resource %s", request.descriptor.name)
        threading.Thread(
            target=watch_informer,
            args=(
                client,
                request.descriptor.name,
                request.descriptor.namespace,
                "",
                request.descriptor.gvr,
                request.handler(),
                request.stop,
            ),
            name=f"resource-request-{request.descriptor.name}",
            daemon=True,
        ).start()

    deadline = time.monotonic() + timeout
    finished = all(
        request.done.wait(max(0.0, deadline - time.monotonic())) for request in pending
    )
    if not finished:
        timed_out = [request.descriptor.name for request in pending if not request.settled]
        for request in pending:
            request.stop.set()
        raise ResourceRequestError(
            "waiting for the approval of the following platform resource requests "
            f"timed out: [{' '.join(timed_out)}]"
        )
    if not all(request.granted for request in pending):
        raise ResourceRequestError("some of the platform resource request(s) has rejected")
    _log.info("All of the requested platform resources have been granted")