"""Configuration for the automation engine."""

from .settings import AppSettings

__all__ = ["AppSettings"]
