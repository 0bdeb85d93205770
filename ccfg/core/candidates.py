"""Candidate list construction.

Reconciles the registry, the detected tags and the user's filters into an
ordered plan of modules to offer. Overlapping modules (several plugins
serving the same purpose) are resolved here: at most one member of a group
is ever selected, and every member that loses is recorded in
``overlap_skipped`` so the caller can report it.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from ccfg.config.schemas import Category, ModuleEntry, Tier
from ccfg.registry.base import Registry

logger = logging.getLogger("ccfg.candidates")


class Scope(str, Enum):
    """Which tiers a run considers."""

    AUTO = "auto"
    INTERACTIVE = "interactive"
    LIST = "list"


SCOPE_TIERS: dict[Scope, tuple[Tier, ...]] = {
    Scope.AUTO: (Tier.AUTO,),
    Scope.INTERACTIVE: (Tier.AUTO, Tier.SUGGEST),
    Scope.LIST: (Tier.AUTO, Tier.SUGGEST, Tier.INFO),
}


class UnknownCategoryError(Exception):
    """A category filter that names no known category."""

    def __init__(self, value: str):
        self.value = value
        valid = ", ".join(c.value for c in Category)
        super().__init__(f"Unknown category: {value}. Valid categories: {valid}")


def parse_category(value: str | None) -> Category | None:
    """Parse a category filter.

    Args:
        value: Category name from the command line, or None

    Returns:
        The Category, or None when no filter was given

    Raises:
        UnknownCategoryError: If the name is not a known category
    """
    if value is None or not value.strip():
        return None
    try:
        return Category(value.strip().lower())
    except ValueError as e:
        raise UnknownCategoryError(value) from e


@dataclass(frozen=True)
class Candidate:
    """A module together with the reason it was offered."""

    module: ModuleEntry
    reason: str

    @property
    def id(self) -> str:
        return self.module.id

    @property
    def tier(self) -> Tier:
        return self.module.tier


@dataclass(frozen=True)
class CandidatePlan:
    """Result of candidate building.

    ``candidates`` holds the selected modules in registry order.
    ``overlap_skipped`` holds overlapping modules that were not selected.
    """

    scope: Scope
    candidates: tuple[Candidate, ...] = ()
    overlap_skipped: tuple[Candidate, ...] = ()
    order: dict[str, int] = field(default_factory=dict, repr=False, compare=False)

    @property
    def ids(self) -> list[str]:
        return [c.id for c in self.candidates]

    @property
    def auto(self) -> list[Candidate]:
        return [c for c in self.candidates if c.tier == Tier.AUTO]

    @property
    def suggested(self) -> list[Candidate]:
        return [c for c in self.candidates if c.tier == Tier.SUGGEST]

    @property
    def info(self) -> list[Candidate]:
        return [c for c in self.candidates if c.tier == Tier.INFO]

    def __len__(self) -> int:
        return len(self.candidates)

    def required_marketplaces(self, candidates: Iterable[Candidate] | None = None) -> list[str]:
        """Marketplaces needed to install the given candidates, in first-use order."""
        seen: list[str] = []
        for candidate in self.candidates if candidates is None else candidates:
            if candidate.module.marketplace not in seen:
                seen.append(candidate.module.marketplace)
        return seen

    def with_overlap_choice(self, group: str, module_id: str) -> "CandidatePlan":
        """Return a plan with another member of an overlap group selected.

        The currently selected member of the group, if any, moves to
        ``overlap_skipped``.

        Args:
            group: Overlap group name
            module_id: Member to select

        Returns:
            A new CandidatePlan

        Raises:
            ValueError: If module_id is not a skipped member of the group
        """
        chosen = next(
            (c for c in self.overlap_skipped if c.id == module_id and c.module.overlap_group == group),
            None,
        )
        if chosen is None:
            if any(c.id == module_id for c in self.candidates):
                return self
            raise ValueError(f"{module_id} is not an available member of overlap group '{group}'")

        displaced = [c for c in self.candidates if c.module.overlap_group == group]
        selected = [c for c in self.candidates if c.module.overlap_group != group]
        selected.append(Candidate(chosen.module, f"chosen for {group}"))
        skipped = [c for c in self.overlap_skipped if c.id != module_id]
        skipped.extend(Candidate(c.module, f"alternative to {module_id}") for c in displaced)

        return replace(
            self,
            candidates=tuple(sorted(selected, key=self._position)),
            overlap_skipped=tuple(sorted(skipped, key=self._position)),
        )

    def _position(self, candidate: Candidate) -> int:
        return self.order.get(candidate.id, len(self.order))


class CandidateBuilder:
    """Builds candidate plans from a registry."""

    def __init__(self, registry: Registry):
        self.registry = registry

    def build(
        self,
        tags: Iterable[str],
        scope: Scope,
        category: Category | None = None,
    ) -> CandidatePlan:
        """Build the candidate plan for a run.

        Args:
            tags: Canonical tags from detection
            scope: Which tiers to consider
            category: Optional category filter

        Returns:
            CandidatePlan with selected and overlap-skipped modules
        """
        detected = set(tags)
        tiers = SCOPE_TIERS[scope]
        order = {entry.id: index for index, entry in enumerate(self.registry.all())}

        pool = [entry for tier in tiers for entry in self.registry.modules_by_tier(tier)]
        if category is not None:
            in_category = {entry.id for entry in self.registry.modules_by_category(category)}
            pool = [entry for entry in pool if entry.id in in_category]
        # Registry order, not tier order
        pool.sort(key=lambda entry: order[entry.id])

        eligible: list[Candidate] = []
        for entry in pool:
            reason = self._reason(entry, detected, scope)
            if reason is None:
                continue
            eligible.append(Candidate(entry, reason))

        candidates: list[Candidate] = []
        skipped: list[Candidate] = []
        winners = self._overlap_winners(eligible, scope)
        for candidate in eligible:
            group = candidate.module.overlap_group
            if group is None:
                candidates.append(candidate)
            elif scope == Scope.AUTO:
                skipped.append(Candidate(candidate.module, f"overlaps {group}; choose interactively"))
            elif winners.get(group) == candidate.id:
                candidates.append(candidate)
            else:
                skipped.append(Candidate(candidate.module, f"alternative to {winners[group]}"))

        logger.debug(
            "Plan for %s scope: %d candidates, %d overlap-skipped",
            scope.value,
            len(candidates),
            len(skipped),
        )
        return CandidatePlan(
            scope=scope,
            candidates=tuple(candidates),
            overlap_skipped=tuple(skipped),
            order=order,
        )

    def _reason(self, entry: ModuleEntry, detected: set[str], scope: Scope) -> str | None:
        if entry.is_universal:
            return "universal"
        if entry.detect is not None and entry.detect in detected:
            return f"detected {entry.detect}"
        if scope == Scope.LIST:
            return "available"
        return None

    def _overlap_winners(self, eligible: list[Candidate], scope: Scope) -> dict[str, str]:
        """Pick one member per overlap group, following the group's preference order."""
        if scope == Scope.AUTO:
            return {}
        eligible_ids = {c.id for c in eligible}
        winners: dict[str, str] = {}
        for candidate in eligible:
            group = candidate.module.overlap_group
            if group is None or group in winners:
                continue
            for member in self.registry.overlap_group_members(group):
                if member.id in eligible_ids:
                    winners[group] = member.id
                    break
        return winners
