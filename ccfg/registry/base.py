"""Read-only module registry.

The registry is an ordered table of ``ModuleEntry`` records. Every query
returns entries in table order so callers can rely on a stable iteration
order when building candidate lists.
"""

import logging
from pathlib import Path

from ccfg.config.parser import load_registry_file
from ccfg.config.schemas import Category, ModuleEntry, OverlapGroup, RegistryFile, Tier

logger = logging.getLogger("ccfg.registry")

DATA_DIR = Path(__file__).parent / "data"
BUNDLED_REGISTRY = DATA_DIR / "plugins.yaml"
FIRST_PARTY_REGISTRY = DATA_DIR / "first_party.yaml"


class Registry:
    """Query interface over a validated registry table."""

    def __init__(self, table: RegistryFile):
        self._table = table
        self._by_id: dict[str, ModuleEntry] = {entry.id: entry for entry in table.plugins}
        self._groups: dict[str, list[ModuleEntry]] = {}
        for entry in table.plugins:
            if entry.overlap_group:
                self._groups.setdefault(entry.overlap_group, []).append(entry)
        # Preferred member first, the rest keep table order
        for members in self._groups.values():
            members.sort(key=lambda m: 0 if m.overlap_preference == "preferred" else 1)

    @property
    def count(self) -> int:
        return len(self._table.plugins)

    @property
    def marketplaces(self) -> dict[str, str | None]:
        return dict(self._table.marketplaces)

    def all(self) -> list[ModuleEntry]:
        """All modules in table order."""
        return list(self._table.plugins)

    def get(self, module_id: str) -> ModuleEntry | None:
        return self._by_id.get(module_id)

    def find_by_name(self, name: str) -> ModuleEntry | None:
        """Find the first module whose install name matches."""
        for entry in self._table.plugins:
            if entry.name == name:
                return entry
        return None

    def modules_by_tier(self, tier: Tier) -> list[ModuleEntry]:
        return [entry for entry in self._table.plugins if entry.tier == tier]

    def modules_by_category(self, category: Category) -> list[ModuleEntry]:
        return [entry for entry in self._table.plugins if entry.category == category]

    def overlap_groups(self) -> list[OverlapGroup]:
        return [OverlapGroup(group) for group in self._groups]

    def overlap_group_members(self, group: str) -> list[ModuleEntry]:
        """Members of an overlap group, preferred member first.

        Args:
            group: Overlap group name

        Returns:
            Ordered members, or an empty list for an unknown group
        """
        return list(self._groups.get(group, []))

    def preferred_member(self, group: str) -> ModuleEntry | None:
        """The member chosen by default for an overlap group.

        A group without an explicit preference falls back to its first member.
        """
        members = self._groups.get(group)
        if not members:
            return None
        return members[0]

    def is_overlapping(self, module_id: str) -> bool:
        entry = self._by_id.get(module_id)
        return entry is not None and entry.overlap_group is not None

    def marketplace_repo(self, name: str) -> str | None:
        """Repository used to add a marketplace, if known."""
        return self._table.marketplaces.get(name)


def load_registry(path: Path | None = None) -> Registry:
    """Load a registry table.

    Args:
        path: Table to load (defaults to the bundled plugins.yaml)

    Returns:
        A Registry over the validated table

    Raises:
        ConfigError: If the table is missing or invalid
    """
    source = path or BUNDLED_REGISTRY
    table = load_registry_file(source)
    logger.debug("Loaded %d modules from %s", len(table.plugins), source)
    return Registry(table)


def load_first_party_registry() -> Registry:
    """Load the table of the tool's own plugins."""
    return load_registry(FIRST_PARTY_REGISTRY)
