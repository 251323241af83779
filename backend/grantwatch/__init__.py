"""Grantwatch: scheduled discovery of grant opportunities from external sources."""

__version__ = "0.1.0"
