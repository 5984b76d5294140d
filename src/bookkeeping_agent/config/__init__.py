"""Configuration module for the bookkeeping agent."""

from bookkeeping_agent.config.limits import AgentLimits
from bookkeeping_agent.config.logging import configure_logging, get_logger
from bookkeeping_agent.config.settings import FlatSettings, get_settings

__all__ = ["AgentLimits", "FlatSettings", "get_settings", "configure_logging", "get_logger"]
