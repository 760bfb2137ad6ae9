"""Configuration management for the spinwheel service."""

from .settings import REQUIRED_VARIABLES, CommonConfig, WheelConfig

__all__ = ["REQUIRED_VARIABLES", "CommonConfig", "WheelConfig"]
