"""Test matchers that compare Kubernetes resources with expected values.

A matcher first looks at the current state of a resource and, when that does
not satisfy it, watches the resource until it does or a timeout passes.
"""

from __future__ import annotations

import copy
import logging
import re
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from appframework.kube import (
    ApiError,
    ApiResource,
    EventHandler,
    GroupVersionResource,
    KubeClient,
    watch_informer,
)

DEFAULT_WAIT_TIMEOUT = 10.0

_INDEX = re.compile(r"[+-]?\d+")
_MISSING = object()

_log = logging.getLogger("matcher")


@dataclass(frozen=True)
class K8sResourceId:
    """Names a resource and, optionally, a field inside it.

    ``gvk`` is any object with ``group``, ``version`` and ``kind`` attributes.
    Items of ``param_path`` that are integers index into lists.
    """

    name: str
    namespace: str = ""
    param_path: tuple[str, ...] = ()
    gvk: Any = None


def extract_path(path: Sequence[str], from_idx: int, to_idx: int) -> list[str]:
    """Return ``path[from_idx..to_idx]`` inclusive, or an empty list if the range is invalid."""
    if to_idx > len(path) - 1 or from_idx < 0 or from_idx > to_idx:
        return []
    return list(path[from_idx : to_idx + 1])


def _nested(obj: Any, keys: Sequence[str]) -> Any:
    for key in keys:
        if not isinstance(obj, Mapping) or key not in obj:
            return _MISSING
        obj = obj[key]
    return obj


def field_by_path(obj: Any, path: Sequence[str]) -> tuple[Any, bool]:
    """Return ``(value, found)`` for the field of ``obj`` that ``path`` points at."""
    if not isinstance(obj, Mapping):
        return None, False
    path = list(path)
    current: Any = obj
    last = -1
    for i, element in enumerate(path):
        if not _INDEX.fullmatch(element):
            continue
        index = int(element)
        if not isinstance(current, Mapping):
            return None, False
        items = _nested(current, extract_path(path, last + 1, i - 1))
        if not isinstance(items, list) or not 0 <= index < len(items):
            return None, False
        current = items[index]
        last = i

    if isinstance(current, Mapping):
        value = _nested(current, extract_path(path, last + 1, len(path) - 1))
        if value is _MISSING:
            return None, False
        return copy.deepcopy(value), True
    return current, True


def api_resource_by_gvk(client: KubeClient, gvk: Any) -> ApiResource:
    """Find the served resource type of ``gvk`` through discovery."""
    if not gvk.version or not gvk.kind:
        raise ValueError("empty input parameters")
    group_version = f"{gvk.group}/{gvk.version}" if gvk.group else gvk.version
    for resource in client.server_resources_for_group_version(group_version):
        if resource.kind == gvk.kind:
            return resource
    raise LookupError("not found")


def gvr_and_api_resource(
    client: KubeClient, gvk: Any
) -> tuple[GroupVersionResource, ApiResource]:
    """Return the resource identifier and discovery entry of ``gvk``."""
    try:
        api_resource = api_resource_by_gvk(client, gvk)
    except (ApiError, LookupError, ValueError) as exc:
        raise LookupError(f"failed to get the apiResource of the given resource: {exc}") from exc
    gvr = GroupVersionResource(gvk.group or "", gvk.version, api_resource.name)
    return gvr, api_resource


def current_state_of_resource(
    client: KubeClient,
    api_resource: ApiResource,
    gvr: GroupVersionResource,
    name: str,
    namespace: str,
) -> dict[str, Any]:
    """Fetch the resource, in ``namespace`` when its type is namespaced."""
    return client.get(gvr, name, namespace if api_resource.namespaced else "")


class _Outcome:
    """One-shot result of a watch, shared by the event callbacks and the waiter."""

    def __init__(self) -> None:
        self.stop = threading.Event()
        self.result = False
        self.finished = False
        self._lock = threading.Lock()

    def finish(self, result: bool) -> None:
        with self._lock:
            if self.finished:
                return
            self.finished = True
            self.result = result
            self.stop.set()

    def expire(self) -> bool:
        with self._lock:
            if self.finished:
                return False
            self.finished = True
            self.stop.set()
            return True


def _watch_with_timeout(
    client: KubeClient,
    name: str,
    namespace: str,
    resource_version: str,
    gvr: GroupVersionResource,
    outcome: _Outcome,
    timeout: float,
    handler: EventHandler,
) -> bool:
    threading.Thread(
        target=watch_informer,
        args=(client, name, namespace, resource_version, gvr, handler, outcome.stop),
        name=f"matcher-watch-{name}",
        daemon=True,
    ).start()
    if not outcome.stop.wait(timeout) and outcome.expire():
        _log.info("Watch stopped: watching has been timed out")
        return False
    return outcome.result


def _message(actual: Any, message: str, expected: Any = _MISSING) -> str:
    text = f"Expected\n    {actual!r}\n{message}"
    if expected is not _MISSING:
        text += f"\n    {expected!r}"
    return text


def _check_actual(actual: Any, message: str) -> K8sResourceId:
    if not isinstance(actual, K8sResourceId):
        raise TypeError(message)
    return actual


@dataclass
class EqualsMatcher:
    """Matches when the field named by the resource id equals ``expected``."""

    client: KubeClient
    expected: Any
    timeout: float = DEFAULT_WAIT_TIMEOUT

    def is_match(self, obj: Any, path: Sequence[str]) -> bool:
        """Tell whether the field of ``obj`` at ``path`` equals the expected value."""
        value, found = field_by_path(obj, path)
        return found and value == self.expected

    def match(self, actual: Any) -> bool:
        """Check the resource now, then watch it for up to ``timeout`` seconds."""
        res = _check_actual(actual, "actual param is not a K8sResourceParamId type")
        gvr, api_resource = gvr_and_api_resource(self.client, res.gvk)

        resource_version = ""
        try:
            current = current_state_of_resource(
                self.client, api_resource, gvr, res.name, res.namespace
            )
        except ApiError:
            current = None
        if current is not None:
            if self.is_match(current, res.param_path):
                return True
            resource_version = (current.get("metadata") or {}).get("resourceVersion", "") or ""
        if self.timeout <= 0:
            return False

        outcome = _Outcome()

        def on_add(obj: dict[str, Any]) -> None:
            if self.is_match(obj, res.param_path):
                _log.debug("EqualsMatcher, Add event: %s", obj)
                outcome.finish(True)

        def on_update(old: dict[str, Any], new: dict[str, Any]) -> None:
            if self.is_match(new, res.param_path):
                _log.debug("EqualsMatcher, Update event: %s", new)
                outcome.finish(True)

        def on_delete(obj: dict[str, Any]) -> None:
            _log.debug("EqualsMatcher, Delete event: %s", obj)
            outcome.finish(False)

        return _watch_with_timeout(
            self.client,
            res.name,
            res.namespace if api_resource.namespaced else "",
            resource_version,
            gvr,
            outcome,
            self.timeout,
            EventHandler(on_add=on_add, on_update=on_update, on_delete=on_delete),
        )

    def _field_by_actual(self, actual: Any) -> tuple[Any, bool]:
        if not isinstance(actual, K8sResourceId):
            return None, False
        try:
            gvr, api_resource = gvr_and_api_resource(self.client, actual.gvk)
            current = current_state_of_resource(
                self.client, api_resource, gvr, actual.name, actual.namespace
            )
        except (ApiError, LookupError, ValueError):
            return None, False
        return field_by_path(current, actual.param_path)

    def failure_message(self, actual: Any) -> str:
        """Describe a failed positive match."""
        value, found = self._field_by_actual(actual)
        if found:
            return _message(value, "to equal", self.expected)
        return _message(actual, "(doesn't exist)\nto equal", self.expected)

    def negated_failure_message(self, actual: Any) -> str:
        """Describe a failed negated match."""
        value, found = self._field_by_actual(actual)
        if found:
            return _message(value, "not to equal", self.expected)
        return _message(actual, "(doesn't exist)\nnot to equal", self.expected)


@dataclass
class ExistsMatcher:
    """Matches when the resource exists, waiting up to ``timeout`` seconds for it."""

    client: KubeClient
    timeout: float = 0.0

    def match(self, actual: Any) -> bool:
        """Tell whether the resource exists or appears before the timeout.

        With no timeout, the error of fetching a missing resource is raised.
        """
        res = _check_actual(actual, "actual param is not a K8sResourceId type")
        try:
            gvr, api_resource = gvr_and_api_resource(self.client, res.gvk)
        except LookupError as exc:
            raise LookupError(f"failed to get the GVR of the given resource: {exc}") from exc

        try:
            current_state_of_resource(self.client, api_resource, gvr, res.name, res.namespace)
            return True
        except ApiError:
            if self.timeout <= 0:
                raise

        outcome = _Outcome()

        def on_add(obj: dict[str, Any]) -> None:
            _log.debug("ExistsMatcher, Add event: %s", obj)
            outcome.finish(True)

        def on_delete(obj: dict[str, Any]) -> None:
            _log.debug("ExistsMatcher, Delete event: %s", obj)
            outcome.finish(False)

        return _watch_with_timeout(
            self.client,
            res.name,
            res.namespace if api_resource.namespaced else "",
            "",
            gvr,
            outcome,
            self.timeout,
            EventHandler(on_add=on_add, on_delete=on_delete),
        )

    def failure_message(self, actual: Any) -> str:
        """Describe a failed positive match."""
        return _message(actual, "to exists")

    def negated_failure_message(self, actual: Any) -> str:
        """Describe a failed negated match."""
        return _message(actual, "not to exists")


def equals_k8s_res(
    client: KubeClient, expected: Any, timeout: float | None = None
) -> EqualsMatcher:
    """Build an equality matcher; the timeout defaults to ``DEFAULT_WAIT_TIMEOUT``."""
    return EqualsMatcher(
        client, expected, DEFAULT_WAIT_TIMEOUT if timeout is None else timeout
    )


def exists_k8s_res(client: KubeClient, timeout: float = 0.0) -> ExistsMatcher:
    """Build an existence matcher; without a timeout it does not wait."""
    return ExistsMatcher(client, timeout)