"""compare-revisions: show how two environments differ, by source revision."""

__version__ = "0.1.0"
