"""Shared utilities for StoryArc."""

from storyarc.utils.logging import LogContext, get_logger, setup_logging

__all__ = ["LogContext", "get_logger", "setup_logging"]
