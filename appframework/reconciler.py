"""Reconciliation of application custom resources: create, update and delete."""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from appframework.config import OperatorConfig
from appframework.finalizer import (
    FINALIZER_ID,
    add_finalizer,
    has_finalizers,
    remove_finalizer,
)
from appframework.helm import Helm, HelmError
from appframework.k8sdynamic import DynamicClient, ResourceDescriptor
from appframework.kube import (
    PROPAGATION_BACKGROUND,
    ApiError,
    ConflictError,
    GroupVersionResource,
    KubeClient,
    NotFoundError,
)
from appframework.licenceexpired import LicenceExpiredCallbacks, new_handler
from appframework.monitoring import Monitor
from appframework.platformres import (
    ResourceRequestError,
    apply_platform_resource_requests,
    apply_pna_resource_requests,
    wait_until_resources_granted,
)
from appframework.template import TemplateError, Templater
from appframework.types import CrClient, OperatorCr

DEPLOYMENT_TYPE_STATEFULSET = "statefulsets"
PNA_RESOURCE_NAME = "privatenetworkaccesses"
PNA_GROUP = "ops.dac.nokia.com"
PNA_VERSION = "v1alpha1"
USING_PNA_LABEL_KEY = "ndac.appfw.private-network-access"
JOIN_SEPARATOR = "---\n"
GRANT_TIMEOUT = 500.0

_RELEASE_POLL_INTERVAL = 0.1
_RETRY_STEPS = 5
_RETRY_DELAY = 0.01
_TEMPLATE_ERRORS = (TemplateError, ValueError, OSError)

_log = logging.getLogger("common_operator_controller")


@dataclass(frozen=True)
class Result:
    """Outcome of one reconciliation."""

    requeue: bool = False
    requeue_after: float = 0.0


@dataclass(frozen=True)
class Request:
    """Names the CR to reconcile."""

    namespace: str
    name: str


@dataclass
class ReconcilerHooks:
    """Application specific parts plugged into the reconciler."""

    create_app_status_monitor: (
        Callable[[OperatorCr, str, "OperatorReconciler"], Monitor] | None
    ) = None
    create_licence_expired_handler: (
        Callable[[CrClient, OperatorCr, KubeClient, Monitor | None], LicenceExpiredCallbacks]
        | None
    ) = None
    check_network_parameters_changed: Callable[[OperatorCr], bool] | None = None


def is_spec_updated(instance: OperatorCr) -> bool:
    """Tell whether the spec differs from the one applied previously."""
    prev_spec = instance.status.prev_spec
    return prev_spec is not None and instance.spec != prev_spec


class OperatorReconciler:
    """Drives an application CR towards its desired state."""

    def __init__(
        self,
        cr_client: CrClient,
        kube: KubeClient,
        configuration: OperatorConfig,
        hooks: ReconcilerHooks | None = None,
    ) -> None:
        self.cr_client = cr_client
        self.kube = kube
        self.configuration = configuration
        self.hooks = hooks or ReconcilerHooks()
        self.app_status_monitor: Monitor | Any | None = None

    def reconcile(self, request: Request) -> Result:
        """Fetch the CR named by ``request`` and handle it."""
        _log.info(
            "Reconciling %s (namespace=%s, name=%s)",
            self.configuration.application_name,
            request.namespace,
            request.name,
        )
        try:
            instance = self.cr_client.get(request.namespace, request.name)
        except NotFoundError:
            # The object is gone; owned objects are garbage collected.
            return Result()
        return self.handle_cr_change(instance, request.namespace)

    def handle_cr_change(self, instance: OperatorCr, namespace: str) -> Result:
        """Dispatch to deletion, finalizer setup, update or creation."""
        _log.info("Event arrived handle it (namespace=%s, name=%s)", namespace, instance.name)
        if instance.metadata.deletion_timestamp is not None:
            return self._handle_delete(instance, namespace)

        if not has_finalizers(instance):
            _log.info("Add finalizer")
            add_finalizer(instance, FINALIZER_ID)
            try:
                self.cr_client.update(instance)
            except Exception:
                _log.exception("Failed to store the finalizer")
            return Result()

        if is_spec_updated(instance):
            return self._handle_update(instance, namespace)
        return self._handle_create(instance, namespace)

    def _helm(self, namespace: str) -> Helm:
        return Helm(namespace, self.configuration.runtime_deployment_path)

    def _templater(self, instance: OperatorCr, namespace: str, dir_name: str) -> Templater:
        return Templater(
            instance.spec,
            namespace,
            self.configuration.runtime_deployment_path,
            dir_name,
            self.configuration.template,
        )

    def _handle_delete(self, instance: OperatorCr, namespace: str) -> Result:
        _log.info("handleDelete called (namespace=%s, name=%s)", namespace, instance.name)
        if self.app_status_monitor is not None:
            self.app_status_monitor.pause()

        try:
            DynamicClient(self.kube).delete_resources(instance.status.applied_resources)
        except ApiError:
            _log.exception("failed to delete the resources")

        try:
            self._helm(namespace).undeploy()
        except HelmError:
            _log.exception("failed to uninstall the helm chart")

        remove_finalizer(instance, FINALIZER_ID)
        try:
            self.cr_client.update(instance)
        except Exception:
            _log.exception("Failed to remove the finalizer")
        return Result()

    def _handle_update(self, instance: OperatorCr, namespace: str) -> Result:
        _log.info("handleUpdate called (namespace=%s, name=%s)", namespace, instance.name)
        check = self.hooks.check_network_parameters_changed
        if check is not None and check(instance):
            _log.debug("Network settings updated, reloading app")
            try:
                self._undeploy_components_affected_by_update(namespace)
            except Exception:
                _log.exception("Failed removal of app components using pna")
                return Result()
            _log.debug("%s app undeployed", self.configuration.application_name)

            pna = ResourceDescriptor(
                name=self.configuration.app_pna_name,
                namespace=namespace,
                gvr=GroupVersionResource(PNA_GROUP, PNA_VERSION, PNA_RESOURCE_NAME),
            )
            try:
                DynamicClient(self.kube).delete_resources([pna])
            except ApiError:
                _log.exception("failed to delete private network access")
                raise

            self._wait_until_released(pna)

            try:
                self._templater(
                    instance, namespace, self.configuration.res_req_dir_name
                ).run(JOIN_SEPARATOR)
            except _TEMPLATE_ERRORS:
                _log.exception("Failed to execute the res-req templater")
                return Result()

            try:
                descriptors = apply_pna_resource_requests(
                    self.kube, namespace, self.configuration.runtime_res_req_path
                )
                wait_until_resources_granted(self.kube, descriptors, GRANT_TIMEOUT)
            except ResourceRequestError:
                _log.exception("failed to get pna resources")
                return Result()

        try:
            self._helm(namespace).deploy()
        except HelmError:
            _log.exception("failed to update the helm chart")
            raise

        instance.status.prev_spec = copy.deepcopy(instance.spec)
        try:
            self._update_status(instance)
        except Exception:
            _log.exception(
                "failed %s status update: previous spec", self.configuration.application_name
            )
        return Result()

    def _undeploy_components_affected_by_update(self, namespace: str) -> None:
        self.cr_client.delete_all_of(
            DEPLOYMENT_TYPE_STATEFULSET,
            namespace,
            {USING_PNA_LABEL_KEY: self.configuration.app_pna_name},
            0,
            PROPAGATION_BACKGROUND,
        )

    def _wait_until_released(self, pna: ResourceDescriptor) -> None:
        while True:
            try:
                self.kube.get(pna.gvr, pna.name, pna.namespace)
            except NotFoundError:
                _log.debug("PNA successfully removed")
                return
            except ApiError as exc:
                _log.debug("error getting old pna: %s", exc)
            _log.debug("Waiting for PNA deletion")
            time.sleep(_RELEASE_POLL_INTERVAL)

    def _update_status(self, instance: OperatorCr) -> None:
        prev_spec = instance.status.prev_spec_copy()
        applied = list(instance.status.applied_resources)
        for attempt in range(_RETRY_STEPS):
            try:
                current = self.cr_client.get(instance.namespace, instance.name)
                current.status.prev_spec = prev_spec
                current.status.applied_resources = list(applied)
                self.cr_client.update_status(current)
            except ConflictError:
                if attempt == _RETRY_STEPS - 1:
                    raise
                time.sleep(_RETRY_DELAY)
                continue
            instance.metadata = current.metadata
            instance.spec = current.spec
            instance.status = current.status
            return

    def _handle_create(self, instance: OperatorCr, namespace: str) -> Result:
        _log.info("handleCreate called (namespace=%s, name=%s)", namespace, instance.name)
        try:
            self._templater(instance, namespace, self.configuration.res_req_dir_name).run(
                JOIN_SEPARATOR
            )
        except _TEMPLATE_ERRORS:
            _log.exception("Failed to execute the res-req templater")
            return Result()

        try:
            app_templater = self._templater(
                instance, namespace, self.configuration.app_deployment_dir_name
            )
        except _TEMPLATE_ERRORS:
            _log.exception("Failed to initialize the app deployment templater")
            return Result()

        try:
            descriptors = apply_platform_resource_requests(
                self.kube, namespace, self.configuration.runtime_res_req_path
            )
            wait_until_resources_granted(self.kube, descriptors, GRANT_TIMEOUT)
        except ResourceRequestError:
            _log.exception("failed to get all of the requested platform resources")
            return Result()

        try:
            app_templater.run(JOIN_SEPARATOR)
        except _TEMPLATE_ERRORS:
            _log.exception("Failed to execute the app deployment templater")
            return Result()

        try:
            self._helm(namespace).deploy()
        except HelmError:
            _log.exception("Failed to deploy the helm chart")
            return Result()

        instance.status.applied_resources = list(descriptors)
        instance.status.prev_spec = copy.deepcopy(instance.spec)
        try:
            self.cr_client.update_status(instance)
        except Exception:
            _log.exception("status applied resources and previous spec update failed")

        monitor = None
        if self.hooks.create_app_status_monitor is not None:
            monitor = self.hooks.create_app_status_monitor(instance, namespace, self)
            self.app_status_monitor = monitor
            monitor.run()

        if self.hooks.create_licence_expired_handler is not None:
            callbacks = self.hooks.create_licence_expired_handler(
                self.cr_client, instance, self.kube, monitor
            )
            new_handler(self.kube, namespace, callbacks).watch()

        return Result()