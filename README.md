# appframework

A library for writing Kubernetes application operators and for testing them
against a cluster. Objects are handled as plain dictionaries and the API is
reached over its REST interface with `requests`.

## Modules

- `appframework.alarmlogger`: `raise_alarm(logtype, alarm)` sets the alarm's
  state to 1 (and its visibility to `GLOBAL` when empty); `clear_alarm` sets the
  state to 0. Each call writes one compact JSON line with the keys `ts`,
  `log_type` and `alarm` to standard error, or to the stream given to
  `init_logger(stream)`. `AlarmDetails`, `LogType`, `AlarmSeverity` and
  `AlarmVisibility` describe the alarm.
- `appframework.config`: `get_configuration(config_dir)` reads
  `<config_dir>/operatorconfig.yaml` into an `OperatorConfig` with a
  `TemplateConfig` for the templater delimiters.
- `appframework.fileutil`: `copy_dir` (recursive, skips symbolic links, the
  destination must not exist), `copy_file` and `remove_dir_with_contents`.
- `appframework.types`: `OperatorCr`, `ObjectMeta`, `OperatorSpec`,
  `OperatorStatus`, `AppStatus`, `PrivateNetworkAccess`, `Network`,
  `AppPodFixIp`, `AppReportedData`, and the `CrClient` protocol for storing CRs.
- `appframework.finalizer`: `add_finalizer`, `remove_finalizer`,
  `get_finalizers`, `has_finalizers` on objects with `metadata.finalizers`.
- `appframework.helm`: `Helm(namespace, deployment_dir, execution_timeout)` runs
  the `helm` command in `<deployment_dir>/app-deployment-generated`.
  `deploy()` installs the `app-release` release, or upgrades it when
  `helm list -q` reports one; `undeploy()` uninstalls it. The default timeout is
  30 seconds; failures and timeouts raise `HelmError`.
- `appframework.kube`: `KubeClient` (get, create, update, merge patch, delete,
  list, discovery, watch), `ClusterConfig.in_cluster()`, `get_kube_client()`,
  typed errors `ApiError`, `NotFoundError`, `ConflictError`, and
  `watch_informer`, which lists and watches objects and calls an
  `EventHandler`'s `on_add`, `on_update` and `on_delete` until a stop event is set.
- `appframework.k8sdynamic`: `DynamicClient.apply_concatenated_resources`
  applies every `---` separated YAML document (comments removed), creating or
  updating each object (Services are merge-patched); `delete_resources` deletes
  the resources of a list of `ResourceDescriptor`s that still exist.
- `appframework.template`: `Templater(data, namespace, deployment_dir, dir_name,
  template_config)` copies `<deployment_dir>/<dir_name>` to
  `<dir_name>-generated`; `run(join_separator)` renders, in name order, every
  file whose name contains `yaml` or `yml` in place and returns them joined,
  each preceded by the separator. Values go between `[[` and `]]` by default,
  statements between `[[%` and `%]]`; undefined names raise `TemplateError`.
- `appframework.platformres`: apply resource request files and
  `wait_until_resources_granted`, which waits until each request's
  `status.approvalStatus` is decided and raises `ResourceRequestError` on
  rejection or timeout.
- `appframework.monitoring`: `Monitor` watches pods labelled
  `statusCheck=true`, keeps the CR's `app_status` up to date, raises or clears
  the `AppNotRunning` alarm and calls the running / not-running callbacks.
- `appframework.licenceexpired`: `Handler` calls `expired()` when a licence
  expiry resource appears in the namespace and `activate()` when it is removed.
- `appframework.reconciler`: `OperatorReconciler.reconcile(Request(namespace,
  name))` adds the finalizer, then creates (templating, platform requests, helm
  deploy, monitor and licence watch), updates or deletes the application;
  `ReconcilerHooks` plugs in the application specific parts.
- `appframework.network`: `private_network_ip_addresses` maps `type/name` of
  workloads to their private network address.
- `appframework.nsconditions`: `NamespaceConditionUpdater` and
  `update_conditions` compute namespace deletion status conditions.
- `appframework.matcher`: `equals_k8s_res(client, expected, timeout)` and
  `exists_k8s_res(client, timeout)` check a `K8sResourceId` now and, if needed,
  watch it until the timeout.
- `appframework.admission`: `send_admission_review_request(url, review)` and
  `AsyncAdmissionRequestSender` post admission reviews to a webhook.

## Install

```
pip install appframework
```

## Example

```python
from appframework.alarmlogger import AlarmDetails, AlarmSeverity, LogType, raise_alarm

raise_alarm(
    LogType.APP_ALARM,
    AlarmDetails(name="AppNotRunning", id="1", severity=AlarmSeverity.WARNING,
                 text="Not all components are ready"),
)
```

```python
from appframework.config import get_configuration
from appframework.template import Templater

cfg = get_configuration("/etc/operator")
rendered = Templater({"replicas": 2}, "my-ns", cfg.runtime_deployment_path,
                     cfg.app_deployment_dir_name, cfg.template).run("---\n")
```

The `helm` command-line tool must be on `PATH` for `appframework.helm`.

## What it does not do

- There is no command and no controller loop: the caller decides when to call
  `OperatorReconciler.reconcile`, and must supply a `CrClient` that reads and
  stores the application's custom resources.
- It does not start or manage a test cluster, and it does not delete namespace
  content; `appframework.nsconditions` only computes the status conditions.
</br>