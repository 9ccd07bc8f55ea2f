"""
Recipe importer core package.

This package focuses on the import subsystem. It exposes dataclasses for
recipes and the ingredient catalog, a per-job event bus for live progress
feeds, an ingredient resolver with fuzzy deduplication, pluggable extraction
gateways, and an orchestrator that drives upload jobs through text
extraction, AI parsing, ingredient resolution and persistence.
"""
