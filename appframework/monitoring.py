"""Watching the application's pods and reporting their state in the CR."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import requests

from appframework.alarmlogger import (
    AlarmDetails,
    AlarmSeverity,
    LogType,
    clear_alarm,
    raise_alarm,
)
from appframework.kube import ApiError, ConflictError, GroupVersionResource, KubeClient
from appframework.types import AppStatus, CrClient, OperatorCr

PODS = GroupVersionResource("", "v1", "pods")
STATUS_CHECK_SELECTOR = "statusCheck=true"
ALARM_NAME = "AppNotRunning"
ALARM_ID = "1"

_RETRY_STEPS = 5
_RETRY_DELAY = 0.01
_WATCH_RETRY_DELAY = 1.0

_log = logging.getLogger("monitoring_controller")


def _alarm(text: str) -> AlarmDetails:
    return AlarmDetails(name=ALARM_NAME, id=ALARM_ID, severity=AlarmSeverity.WARNING, text=text)


class Monitor:
    """Keeps the CR's application status in line with the readiness of its pods."""

    def __init__(
        self,
        kube: KubeClient,
        cr_client: CrClient,
        instance: OperatorCr,
        namespace: str,
        running_callback: Callable[[], Any] | None = None,
        not_running_callback: Callable[[], Any] | None = None,
    ) -> None:
        self.kube = kube
        self.cr_client = cr_client
        self.instance = instance
        self.namespace = namespace
        self.running_callback = running_callback
        self.not_running_callback = not_running_callback
        self.running = False
        self.alarm_active = False
        self._stop: threading.Event | None = None

    def run(self) -> None:
        """Start watching the pods in the background."""
        if self.running:
            return
        self.running = True
        _log.info("Watching application")
        self._stop = threading.Event()
        threading.Thread(
            target=self._watch_pods, args=(self._stop,), name="app-monitor", daemon=True
        ).start()

    def pause(self) -> None:
        """Stop watching the pods."""
        if self.running and self._stop is not None:
            _log.info("Watching application paused")
            self.running = False
            self._stop.set()

    def application_status(self) -> AppStatus:
        """Return RUNNING when every status-checked container is ready."""
        try:
            pods = self.kube.list(PODS, self.namespace, label_selector=STATUS_CHECK_SELECTOR) or {}
        except ApiError as exc:
            _log.info("listing pods failed: %s", exc)
            pods = {}
        for pod in pods.get("items") or []:
            statuses = (pod.get("status") or {}).get("containerStatuses") or []
            if not statuses or not all(status.get("ready") for status in statuses):
                return AppStatus.NOT_RUNNING
        return AppStatus.RUNNING

    def handle_pod_update(self) -> None:
        """React to a pod change: alarms, callbacks and the CR status."""
        _log.info("Pod changed")
        status = self.application_status()
        if self.instance.status.app_status != status:
            if status == AppStatus.RUNNING:
                if self.alarm_active:
                    clear_alarm(LogType.APP_ALARM, _alarm("All components are now ready"))
                    self.alarm_active = False
                if self.running_callback is not None:
                    self.running_callback()
            elif status == AppStatus.NOT_RUNNING:
                if not self.alarm_active:
                    raise_alarm(LogType.APP_ALARM, _alarm("Not all components are ready"))
                    self.alarm_active = True
                if self.not_running_callback is not None:
                    self.not_running_callback()

        self.instance.status.app_status = status
        try:
            self._update_app_status()
        except Exception:
            _log.exception("status appStatus update failed")
        _log.info("UpdateFunc status=%s", self.instance.status.app_status)

    def _update_app_status(self) -> None:
        app_status = self.instance.status.app_status
        for attempt in range(_RETRY_STEPS):
            try:
                current = self.cr_client.get(self.instance.namespace, self.instance.name)
                current.status.app_status = app_status
                self.cr_client.update_status(current)
            except ConflictError:
                if attempt == _RETRY_STEPS - 1:
                    raise
                time.sleep(_RETRY_DELAY)
                continue
            if current is not self.instance:
                self.instance.metadata = current.metadata
                self.instance.spec = current.spec
                self.instance.status = current.status
            return

    def _watch_pods(self, stop: threading.Event) -> None:
        version = ""
        relist = True
        while not stop.is_set():
            try:
                if relist:
                    listed = self.kube.list(
                        PODS, self.namespace, label_selector=STATUS_CHECK_SELECTOR
                    ) or {}
                    version = (listed.get("metadata") or {}).get("resourceVersion", "") or ""
                    relist = False
                for kind, obj in self.kube.watch(
                    PODS,
                    self.namespace,
                    label_selector=STATUS_CHECK_SELECTOR,
                    resource_version=version,
                    stop_event=stop,
                ):
                    version = (obj.get("metadata") or {}).get("resourceVersion", "") or version
                    if stop.is_set():
                        break
                    if kind == "MODIFIED":
                        self.handle_pod_update()
                    elif kind == "DELETED":
                        _log.info("Pod deleted")
            except (ApiError, requests.RequestException) as exc:
                _log.info("pod watch interrupted: %s", exc)
                relist = True
                stop.wait(_WATCH_RETRY_DELAY)
        _log.info("Application watch has been stopped")


_monitor: Monitor | None = None


def new_monitor(
    kube: KubeClient,
    cr_client: CrClient,
    instance: OperatorCr,
    namespace: str,
    running_callback: Callable[[], Any] | None = None,
    not_running_callback: Callable[[], Any] | None = None,
) -> Monitor:
    """Return the process-wide monitor, creating it on the first call."""
    global _monitor
    if _monitor is None:
        _monitor = Monitor(
            kube, cr_client, instance, namespace, running_callback, not_running_callback
        )
    return _monitor