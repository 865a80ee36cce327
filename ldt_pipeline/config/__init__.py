"""
Runtime configuration for the LDT ingestion pipeline.
"""

from .settings import DatabaseSettings, PipelineSettings, load_settings

__all__ = ["PipelineSettings", "DatabaseSettings", "load_settings"]
