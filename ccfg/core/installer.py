"""Plugin installation through the claude CLI.

This module contains the PluginInstaller which installs candidates one at a
time and records an outcome for each. A failing install never stops the
run; the summary reports how many failed.
"""

import logging
import shutil
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from ccfg.core.candidates import Candidate

logger = logging.getLogger("ccfg.installer")

DEFAULT_TIMEOUT = 60.0


class ExternalToolError(Exception):
    """The claude CLI is missing or could not be run."""

    def __init__(self, message: str, command: str | None = None):
        self.command = command
        super().__init__(message)


class InstallError(Exception):
    """Error installing a single plugin."""

    def __init__(self, message: str, plugin_ref: str | None = None):
        self.plugin_ref = plugin_ref
        super().__init__(message)


class PluginTool(Protocol):
    """Installs one plugin by reference (``name@marketplace``)."""

    def install_plugin(self, plugin_ref: str) -> None: ...


class ClaudeCli:
    """Thin wrapper over the ``claude`` executable.

    Args:
        command: Executable name or path
        timeout: Seconds allowed for each invocation
    """

    def __init__(self, command: str = "claude", timeout: float = DEFAULT_TIMEOUT):
        self.command = command
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    def run(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        """Run a claude command.

        Args:
            args: Arguments (without the executable)

        Returns:
            Completed process; a non-zero exit code is not raised

        Raises:
            ExternalToolError: If the executable is not installed
            subprocess.TimeoutExpired: If the command exceeds the timeout
        """
        cmd = [self.command] + args
        logger.debug("Running: %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            logger.error("%s is not installed or not in PATH", self.command)
            raise ExternalToolError(
                f"{self.command} is not installed or not in PATH", command=self.command
            ) from e

    def install_plugin(self, plugin_ref: str) -> None:
        """Install a plugin.

        Raises:
            InstallError: If the install fails or times out
            ExternalToolError: If the executable is not installed
        """
        try:
            result = self.run(["plugin", "install", plugin_ref])
        except subprocess.TimeoutExpired as e:
            raise InstallError(f"Timed out after {self.timeout:g}s", plugin_ref) from e
        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip() or f"exit code {result.returncode}"
            raise InstallError(detail, plugin_ref)

    def list_marketplaces(self) -> str:
        """Return the raw output of ``claude plugin marketplace list``.

        Raises:
            ExternalToolError: If the listing cannot be produced
        """
        try:
            result = self.run(["plugin", "marketplace", "list"])
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError("Marketplace listing timed out", command=self.command) from e
        if result.returncode != 0:
            raise ExternalToolError(
                f"Marketplace listing failed: {result.stderr.strip()}", command=self.command
            )
        return result.stdout


@dataclass
class InstallOutcome:
    """Result of installing one candidate."""

    module_id: str
    ok: bool
    error_detail: str = ""
    plugin_ref: str = ""


@dataclass
class InstallSummary:
    """Summary of an installation run."""

    outcomes: list[InstallOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def all_successful(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failures(self) -> list[InstallOutcome]:
        return [o for o in self.outcomes if not o.ok]


class PluginInstaller:
    """Installs candidates sequentially, continuing past failures."""

    def __init__(self, tool: PluginTool):
        self.tool = tool

    def install(self, candidates: Iterable[Candidate]) -> InstallSummary:
        """Install each candidate.

        Args:
            candidates: Candidates in install order

        Returns:
            InstallSummary with one outcome per candidate

        Raises:
            ExternalToolError: If the CLI disappears mid-run
        """
        candidates = list(candidates)
        summary = InstallSummary()
        if not candidates:
            logger.info("No plugins to install")
            return summary

        logger.info("Installing %d plugin(s)", len(candidates))
        for candidate in candidates:
            ref = candidate.module.plugin_ref
            try:
                self.tool.install_plugin(ref)
            except InstallError as e:
                logger.warning("Failed to install %s: %s", ref, e)
                summary.outcomes.append(InstallOutcome(candidate.id, False, str(e), ref))
                continue
            logger.info("Installed %s", ref)
            summary.outcomes.append(InstallOutcome(candidate.id, True, "", ref))
        return summary
