"""Configuration module for sqla-rls."""

from __future__ import annotations

from sqla_rls.config._config import CompilerConfig, configure, get_global_config

__all__ = ["CompilerConfig", "configure", "get_global_config"]
