"""Zero-downtime container deployment orchestrator."""
