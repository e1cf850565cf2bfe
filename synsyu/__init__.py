"""Guards and helpers for the Syn-Syu update orchestrator."""
