"""Extraction orchestration."""
