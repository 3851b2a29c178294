"""Watching licence expiry resources of the application's namespace."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, runtime_checkable

from appframework.kube import EventHandler, GroupVersionResource, KubeClient, watch_informer

GROUP = "ops.dac.nokia.com"
VERSION = "v1alpha1"
RESOURCE = "licenceexpireds"

_log = logging.getLogger("licence_expired_handler")


@runtime_checkable
class LicenceExpiredCallbacks(Protocol):
    """Reactions to the licence expiring and becoming valid again."""

    def expired(self) -> None:
        ...

    def activate(self) -> None:
        ...


class Handler:
    """Calls ``expired`` when a licence expiry resource appears, ``activate`` when it goes."""

    def __init__(self, kube: KubeClient, namespace: str, callbacks: LicenceExpiredCallbacks) -> None:
        self.kube = kube
        self.namespace = namespace
        self.gvr = GroupVersionResource(GROUP, VERSION, RESOURCE)
        self.callbacks = callbacks
        self.watching = False
        self._stop = threading.Event()

    def watch(self) -> None:
        """Start watching in the background; does nothing when already watching."""
        if self.watching:
            return
        self.watching = True
        _log.info("Watch LicenceExpired Resource in namespace %s", self.namespace)
        self._stop = threading.Event()
        handler = EventHandler(
            on_add=lambda obj: self._expired(obj),
            on_delete=lambda obj: self._activate(obj),
        )
        threading.Thread(
            target=watch_informer,
            args=(self.kube, "", self.namespace, "", self.gvr, handler, self._stop),
            name="licence-expired-watch",
            daemon=True,
        ).start()

    def stop(self) -> None:
        """Stop watching."""
        self._stop.set()
        self.watching = False

    def _expired(self, obj: Any) -> None:
        self.callbacks.expired()

    def _activate(self, obj: Any) -> None:
        self.callbacks.activate()


_handler: Handler | None = None


def new_handler(kube: KubeClient, namespace: str, callbacks: LicenceExpiredCallbacks) -> Handler:
    """Return the process-wide handler, creating it on the first call."""
    global _handler
    if _handler is None:
        _handler = Handler(kube, namespace, callbacks)
    return _handler