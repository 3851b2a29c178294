"""Rendering of deployment YAML files with values from the custom resource."""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from typing import Any

import jinja2

from appframework.config import TemplateConfig
from appframework.fileutil import copy_dir

DEFAULT_LEFT_DELIMITER = "[["
DEFAULT_RIGHT_DELIMITER = "]]"

_log = logging.getLogger("template_controller")


class TemplateError(Exception):
    """A template could not be rendered."""


def _context(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, Mapping):
        return dict(data)
    if is_dataclass(data) and not isinstance(data, type):
        return {f.name: getattr(data, f.name) for f in fields(data)}
    return dict(vars(data))


class Templater:
    """Copies a deployment directory and renders its YAML files in place.

    Values are written between the configured delimiters (``[[ name ]]`` by
    default); statements use the delimiters with ``%`` inside them.
    """

    def __init__(
        self,
        data: Any,
        namespace: str,
        deployment_dir: str,
        dir_name: str,
        template_config: TemplateConfig | None = None,
    ) -> None:
        if not deployment_dir:
            raise ValueError("deploymentDir is not set")
        config = template_config or TemplateConfig()
        if config == TemplateConfig():
            config = TemplateConfig(DEFAULT_LEFT_DELIMITER, DEFAULT_RIGHT_DELIMITER)
        self.data = data
        self.namespace = namespace
        self.deployment_dir = deployment_dir
        self.dir_name = dir_name
        self.delimiters = config
        self.source_dir = os.path.join(deployment_dir, dir_name)
        self.work_dir = os.path.join(deployment_dir, dir_name + "-generated")

        left = config.left_delimiter or "{{"
        right = config.right_delimiter or "}}"
        self._env = jinja2.Environment(
            variable_start_string=left,
            variable_end_string=right,
            block_start_string=left + "%",
            block_end_string="%" + right,
            comment_start_string=left + "#",
            comment_end_string="#" + right,
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        self._copy_deployment_yamls()

    def _copy_deployment_yamls(self) -> None:
        shutil.rmtree(self.work_dir, ignore_errors=True)
        copy_dir(self.source_dir, self.work_dir)

    def run(self, join_separator: str) -> str:
        """Render every YAML file of the working copy; return them joined."""
        _log.info("Running templates")
        try:
            return self._template_dir(self.work_dir, join_separator)
        except TemplateError as exc:
            raise TemplateError(f"failed to run the Cr Templater: {exc}") from exc

    def _template_dir(self, work_dir: str, join_separator: str) -> str:
        _log.info("templating dir %s", work_dir)
        try:
            with os.scandir(work_dir) as scanner:
                entries = sorted(scanner, key=lambda entry: entry.name)
        except OSError as exc:
            raise TemplateError(f"failed to read dir: {exc}") from exc
        out = []
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                out.append(self._template_dir(entry.path, join_separator))
            else:
                out.append(self._template_file(entry.path, entry.name, join_separator))
        return "".join(out)

    def _template_file(self, path: str, name: str, join_separator: str) -> str:
        if "yaml" not in name and "yml" not in name:
            return ""
        _log.info("templating file %s", name)
        try:
            with open(path, encoding="utf-8") as handle:
                template = self._env.from_string(handle.read())
            rendered = template.render(_context(self.data))
        except jinja2.TemplateError as exc:
            raise TemplateError(f"failed to execute template {name}: {exc}") from exc
        except OSError as exc:
            raise TemplateError(f"failed to read file: {name}: {exc}") from exc
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(rendered)
        return join_separator + rendered