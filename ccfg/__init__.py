"""ccfg - plugin and conventions bootstrapper for Claude Code."""

__version__ = "0.1.0"
