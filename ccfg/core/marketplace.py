"""Marketplace availability checks.

Installing ``name@marketplace`` only works when the marketplace has been
added to Claude Code. Before installing, the required marketplaces are
compared against the ones ``claude plugin marketplace list`` reports.
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from ccfg.core.installer import ClaudeCli, ExternalToolError

logger = logging.getLogger("ccfg.marketplace")

# Lines like "  ❯ claude-plugins-official"
_LISTING_RE = re.compile(r"^\s*[❯>]\s*(?P<name>\S+)")


class ValidationMode(str, Enum):
    """ENFORCE fails on missing marketplaces, ADVISORY only warns."""

    ENFORCE = "enforce"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class MissingMarketplace:
    """A required marketplace that is not configured."""

    name: str
    repo: str | None = None

    @property
    def remediation(self) -> str | None:
        if not self.repo:
            return None
        return f"claude plugin marketplace add {self.repo}"


class MissingMarketplaceError(Exception):
    """Required marketplaces are not configured."""

    def __init__(self, missing: list[MissingMarketplace]):
        self.missing = missing
        lines = [f"{len(missing)} required marketplace(s) not configured. Add them and re-run."]
        for item in missing:
            lines.append(f"  Missing marketplace: {item.name}")
            if item.remediation:
                lines.append(f"    Run: {item.remediation}")
        super().__init__("\n".join(lines))


class MarketplaceLister(Protocol):
    """Reports the names of configured marketplaces."""

    def list_marketplaces(self) -> set[str]: ...


def parse_marketplace_listing(output: str) -> set[str]:
    """Extract marketplace names from ``claude plugin marketplace list`` output."""
    names: set[str] = set()
    for line in output.splitlines():
        match = _LISTING_RE.match(line)
        if match:
            names.add(match["name"])
    return names


class ClaudeMarketplaceLister:
    """MarketplaceLister backed by the claude CLI."""

    def __init__(self, cli: ClaudeCli):
        self.cli = cli

    def list_marketplaces(self) -> set[str]:
        return parse_marketplace_listing(self.cli.list_marketplaces())


def validate(
    required: Iterable[str],
    reported: set[str],
    repo_for: Callable[[str], str | None] | None = None,
) -> list[MissingMarketplace]:
    """Compare required marketplaces with the configured ones.

    Args:
        required: Marketplaces the candidates need, in order
        reported: Marketplaces that are configured
        repo_for: Looks up the repository used to add a marketplace

    Returns:
        Missing marketplaces in the order they were required
    """
    missing: list[MissingMarketplace] = []
    for name in dict.fromkeys(required):
        if name not in reported:
            missing.append(MissingMarketplace(name, repo_for(name) if repo_for else None))
    return missing


class MarketplaceValidator:
    """Checks required marketplaces against a lister.

    Args:
        lister: Source of configured marketplace names
        repo_for: Looks up the repository used to add a marketplace
    """

    def __init__(
        self,
        lister: MarketplaceLister,
        repo_for: Callable[[str], str | None] | None = None,
    ):
        self.lister = lister
        self.repo_for = repo_for

    def check(self, required: Iterable[str], mode: ValidationMode) -> list[MissingMarketplace]:
        """Check that every required marketplace is configured.

        If the listing itself fails the check is skipped with a warning.

        Args:
            required: Marketplaces the candidates need
            mode: ENFORCE raises on missing marketplaces, ADVISORY warns

        Returns:
            Missing marketplaces (always empty in ENFORCE mode)

        Raises:
            MissingMarketplaceError: In ENFORCE mode when any are missing
        """
        required = list(required)
        if not required:
            return []
        try:
            reported = self.lister.list_marketplaces()
        except ExternalToolError as e:
            logger.warning("Could not check marketplace availability: %s", e)
            return []

        missing = validate(required, reported, self.repo_for)
        if not missing:
            logger.debug("All %d required marketplaces configured", len(required))
            return []
        if mode == ValidationMode.ENFORCE:
            raise MissingMarketplaceError(missing)
        for item in missing:
            logger.warning("Missing marketplace: %s", item.name)
        return missing
