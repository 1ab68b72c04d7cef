"""xlsbot -- contextual dispatch engine for chat bots."""

__version__ = "0.3.0"
