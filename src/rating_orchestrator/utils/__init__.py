"""Small helpers shared across the orchestrator."""
