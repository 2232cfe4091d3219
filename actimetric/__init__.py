"""Ingestion of pre-aggregated actigraphy epoch files (PIM, ZCM, counts)."""

__version__ = "0.3.0"
