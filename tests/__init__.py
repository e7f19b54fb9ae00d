"""planning-orchestrator tests."""
