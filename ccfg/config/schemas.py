"""Pydantic schemas for ccfg data files.

This module defines the data models for:
- plugins.yaml / first_party.yaml (module registry tables)
- ccfg.yaml (tool configuration)
"""

from enum import Enum
from pathlib import Path
from typing import Literal, NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# =============================================================================
# Common Types
# =============================================================================


class Tier(str, Enum):
    """How eagerly a module is offered."""

    AUTO = "auto"
    SUGGEST = "suggest"
    INFO = "info"


class Category(str, Enum):
    """Functional category of a module."""

    GENERAL = "general"
    LSP = "lsp"
    INTEGRATION = "integration"
    SKILLS = "skills"
    ISSUE_TRACKING = "issue-tracking"
    STYLE = "style"


OverlapGroup = NewType("OverlapGroup", str)

OverlapPreference = Literal["preferred", "alternative"]
ModuleSource = Literal["official", "community"]

# Gate value for modules offered regardless of detection
UNIVERSAL = "always"


# =============================================================================
# Registry Models
# =============================================================================


class ModuleEntry(BaseModel):
    """A single installable plugin known to the registry.

    - id: Unique registry key (e.g. "official/pyright-lsp")
    - name: Install name, defaults to the last segment of id
    - detect: Tag gating the module, "always" for universal modules,
      None for modules that are only listed
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    tier: Tier
    category: Category
    marketplace: str
    detect: str | None = None
    overlap_group: OverlapGroup | None = None
    overlap_preference: OverlapPreference | None = None
    source: ModuleSource | None = None
    permissions: tuple[str, ...] = ()

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Reject empty ids and stray whitespace."""
        if not v or v != v.strip():
            raise ValueError(f"Invalid module id: {v!r}")
        return v

    @model_validator(mode="before")
    @classmethod
    def set_default_name(cls, data: object) -> object:
        """Default name to the last path segment of id."""
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            data = {**data, "name": str(data["id"]).rsplit("/", 1)[-1]}
        return data

    @model_validator(mode="after")
    def validate_overlap(self) -> "ModuleEntry":
        """A preference only makes sense inside an overlap group."""
        if self.overlap_preference is not None and self.overlap_group is None:
            raise ValueError(f"{self.id}: overlap_preference requires overlap_group")
        return self

    @property
    def plugin_ref(self) -> str:
        """Reference written to enabledPlugins and passed to the installer."""
        return f"{self.name}@{self.marketplace}"

    @property
    def is_universal(self) -> bool:
        return self.detect == UNIVERSAL

    @property
    def is_manual_only(self) -> bool:
        return self.detect is None


class RegistryFile(BaseModel):
    """A registry table as stored on disk."""

    version: str = "1"
    # marketplace name -> repository passed to "claude plugin marketplace add"
    marketplaces: dict[str, str | None] = Field(default_factory=dict)
    plugins: list[ModuleEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_table(self) -> "RegistryFile":
        """Check id uniqueness, marketplace references and overlap preferences."""
        seen: set[str] = set()
        preferred: dict[str, str] = {}
        for entry in self.plugins:
            if entry.id in seen:
                raise ValueError(f"Duplicate module id: {entry.id}")
            seen.add(entry.id)
            if entry.marketplace not in self.marketplaces:
                raise ValueError(f"{entry.id}: unknown marketplace '{entry.marketplace}'")
            if entry.overlap_group and entry.overlap_preference == "preferred":
                if entry.overlap_group in preferred:
                    raise ValueError(
                        f"Overlap group '{entry.overlap_group}' has two preferred members: "
                        f"{preferred[entry.overlap_group]}, {entry.id}"
                    )
                preferred[entry.overlap_group] = entry.id
        return self


# =============================================================================
# Tool Configuration (ccfg.yaml)
# =============================================================================


class ToolConfig(BaseModel):
    """Tool configuration (~/.claude/ccfg.yaml) schema."""

    backup_dir: Path | None = None
    backup_keep: int = Field(default=10, ge=1)
    install_timeout: float = Field(default=60.0, gt=0)
    claude_command: str = "claude"
    registry_file: Path | None = None

    @field_validator("claude_command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("claude_command cannot be empty")
        return v
