"""townhall: control plane for a multi-agent town workspace."""

__version__ = "0.1.0"
