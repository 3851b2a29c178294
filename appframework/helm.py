"""Deployment of the generated chart with the ``helm`` command."""

from __future__ import annotations

import logging
import subprocess

RELEASE_NAME = "app-release"
FLAG_NAMESPACE = "--namespace"
DEFAULT_EXECUTION_TIMEOUT = 30.0

_log = logging.getLogger("helm_controller")


class HelmError(Exception):
    """A helm command failed or timed out."""


class Helm:
    """Installs, upgrades and removes the application release in a namespace."""

    def __init__(
        self,
        namespace: str,
        deployment_dir: str,
        execution_timeout: float | None = None,
    ) -> None:
        self.namespace = namespace
        self.work_dir = deployment_dir + "/app-deployment-generated"
        self.timeout = (
            DEFAULT_EXECUTION_TIMEOUT if execution_timeout is None else execution_timeout
        )

    def _run(self, *args: str) -> str:
        try:
            completed = subprocess.run(
                ["helm", *args],
                cwd=self.work_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise HelmError("command timed out") from exc
        except OSError as exc:
            raise HelmError(f"command failed, output: {exc}") from exc

        output = completed.stdout or ""
        if completed.returncode != 0:
            raise HelmError(
                f"command failed with exit status {completed.returncode}, output: {output}"
            )
        _log.info("cmd output: %s", output)
        _log.info("command successfully executed")
        return output

    def get_release(self) -> str:
        """Return the release list of the namespace as printed by helm."""
        return self._run("list", "-q", FLAG_NAMESPACE, self.namespace)

    def _install(self) -> None:
        self._run("install", RELEASE_NAME, FLAG_NAMESPACE, self.namespace, ".")

    def _upgrade(self) -> None:
        self._run("upgrade", RELEASE_NAME, FLAG_NAMESPACE, self.namespace, ".")

    def deploy(self) -> None:
        """Install the release, or upgrade it when one already exists."""
        if self.get_release() == "":
            self._install()
        else:
            self._upgrade()

    def undeploy(self) -> None:
        """Uninstall the release."""
        self._run("uninstall", RELEASE_NAME, FLAG_NAMESPACE, self.namespace)