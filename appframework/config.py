"""Operator configuration read from ``operatorconfig.yaml``."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

OPERATOR_CONFIG_FILENAME = "operatorconfig.yaml"

_FIELDS = {
    "applicationName": "application_name",
    "namespace": "namespace",
    "sourceDeploymentPath": "source_deployment_path",
    "runtimeDeploymentPath": "runtime_deployment_path",
    "appDeploymentDirName": "app_deployment_dir_name",
    "runtimeResReqPath": "runtime_res_req_path",
    "resReqDirName": "res_req_dir_name",
    "kubernetesAppDeploymentName": "kubernetes_app_deployment_name",
    "appPnaName": "app_pna_name",
}


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"configuration field {key!r} must be a string")
    return value


@dataclass
class TemplateConfig:
    """Delimiters used by the templater; empty means the defaults."""

    left_delimiter: str = ""
    right_delimiter: str = ""


def _template_config(data: Any) -> TemplateConfig:
    if data is None:
        return TemplateConfig()
    if not isinstance(data, Mapping):
        raise ValueError("configuration field 'templater' must be a mapping")
    return TemplateConfig(
        left_delimiter=_string(data, "leftDelimiter"),
        right_delimiter=_string(data, "rightDelimiter"),
    )


@dataclass
class OperatorConfig:
    """Settings of an application operator."""

    application_name: str = ""
    namespace: str = ""
    source_deployment_path: str = ""
    runtime_deployment_path: str = ""
    app_deployment_dir_name: str = ""
    runtime_res_req_path: str = ""
    res_req_dir_name: str = ""
    kubernetes_app_deployment_name: str = ""
    app_pna_name: str = ""
    template: TemplateConfig = field(default_factory=TemplateConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> OperatorConfig:
        """Build a configuration from its YAML mapping; unknown keys are ignored."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError("operator configuration must be a mapping")
        values: dict[str, Any] = {
            attr: _string(data, key) for key, attr in _FIELDS.items()
        }
        values["template"] = _template_config(data.get("templater"))
        return cls(**values)

    def app_deployment_source_path(self) -> str:
        return self.source_deployment_path + "/" + self.app_deployment_dir_name

    def resource_request_source_path(self) -> str:
        return self.source_deployment_path + "/" + self.res_req_dir_name


def get_configuration(config_dir: str | os.PathLike[str]) -> OperatorConfig:
    """Read ``operatorconfig.yaml`` from ``config_dir``."""
    path = os.fspath(config_dir) + "/" + OPERATOR_CONFIG_FILENAME
    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    return OperatorConfig.from_dict(data)