"""planning-orchestrator - phase-driven project planning with complexity-based agent allocation."""
