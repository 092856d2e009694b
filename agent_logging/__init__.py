"""Logging package."""
from .setup import PIPELINE_LOGGERS, configure_pipeline_loggers, setup_logging

__all__ = ["PIPELINE_LOGGERS", "configure_pipeline_loggers", "setup_logging"]
