"""Merging plugin selections into a Claude settings document.

The merge is additive: it enables plugins that are absent, unions
permissions into ``permissions.allow`` and fills default keys only when the
user has not set them. A plugin the user disabled (``false``) stays disabled
and keys the tool does not know about are carried through untouched.
"""

import copy
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ccfg.core.candidates import Candidate
from ccfg.core.installer import InstallOutcome

ENABLED_PLUGINS = "enabledPlugins"
PERMISSIONS = "permissions"
ALLOW = "allow"

# Keys set by bootstrap when the user has not chosen a value
BOOTSTRAP_DEFAULTS: dict[str, Any] = {"alwaysThinkingEnabled": True}


def serialize_settings(document: Mapping[str, Any]) -> str:
    """Serialize a settings document in its canonical on-disk form."""
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


@dataclass
class MergeResult:
    """Outcome of a settings merge."""

    document: dict[str, Any]
    changed: bool
    added_plugins: list[str] = field(default_factory=list)
    added_permissions: list[str] = field(default_factory=list)
    added_defaults: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return serialize_settings(self.document)


def _dedupe(values: Iterable[Any]) -> list[Any]:
    # Equality rather than hashing: user files may hold non-string entries
    result: list[Any] = []
    for value in values:
        if value not in result:
            result.append(value)
    return result


class SettingsMerger:
    """Pure merge of candidates and install outcomes into a settings document."""

    def merge(
        self,
        existing: Mapping[str, Any],
        candidates: Iterable[Candidate],
        outcomes: Iterable[InstallOutcome] | None = None,
        defaults: Mapping[str, Any] | None = None,
    ) -> MergeResult:
        """Merge enabled plugins and permissions into a settings document.

        Args:
            existing: Current document (never modified)
            candidates: Candidates considered for this run
            outcomes: Install outcomes; only successful ones are enabled.
                None means every candidate is treated as installed.
            defaults: Top-level keys to set when absent

        Returns:
            MergeResult with the new document and what was added
        """
        document = copy.deepcopy(dict(existing))
        candidates = list(candidates)

        if outcomes is None:
            succeeded = {c.id for c in candidates}
        else:
            succeeded = {o.module_id for o in outcomes if o.ok}
        enabled = [c for c in candidates if c.id in succeeded]

        added_plugins = self._merge_plugins(document, enabled)
        added_permissions = self._merge_permissions(document, enabled)

        added_defaults: list[str] = []
        for key, value in (defaults or {}).items():
            if key not in document:
                document[key] = copy.deepcopy(value)
                added_defaults.append(key)

        changed = serialize_settings(document) != serialize_settings(existing)
        return MergeResult(
            document=document,
            changed=changed,
            added_plugins=added_plugins,
            added_permissions=added_permissions,
            added_defaults=added_defaults,
        )

    def _merge_plugins(self, document: dict[str, Any], enabled: list[Candidate]) -> list[str]:
        plugins = document.get(ENABLED_PLUGINS)
        if not isinstance(plugins, dict):
            if not enabled:
                return []
            plugins = {}
            document[ENABLED_PLUGINS] = plugins

        added: list[str] = []
        for candidate in enabled:
            ref = candidate.module.plugin_ref
            if ref not in plugins:
                plugins[ref] = True
                added.append(ref)
        return added

    def _merge_permissions(self, document: dict[str, Any], enabled: list[Candidate]) -> list[str]:
        wanted = _dedupe(p for c in enabled for p in c.module.permissions)
        permissions = document.get(PERMISSIONS)
        if not isinstance(permissions, dict):
            if not wanted:
                return []
            permissions = {}
            document[PERMISSIONS] = permissions

        current = permissions.get(ALLOW)
        if not isinstance(current, list):
            if not wanted:
                return []
            current = []

        merged = _dedupe(current)
        added = [p for p in wanted if p not in merged]
        merged.extend(added)
        if merged != current or ALLOW not in permissions:
            permissions[ALLOW] = merged
        return added
