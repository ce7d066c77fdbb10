"""Metadata generation: schemas, persistence, backend ports and the run orchestrator."""
