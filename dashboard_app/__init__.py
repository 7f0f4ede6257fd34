"""Asylum statistics dashboard: reference models and the release ingest pipeline."""
