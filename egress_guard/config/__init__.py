"""Configuration loading and management."""

from egress_guard.config.loader import Settings, build_egress_config, get_settings, load_egress_file

__all__ = ["Settings", "build_egress_config", "get_settings", "load_egress_file"]
