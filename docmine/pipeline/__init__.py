"""Batch processing pipeline: steps, registry, orchestrator and scheduler."""
