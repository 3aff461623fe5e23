"""SmartQueue recommendation engine."""

__version__ = "0.4.0"
