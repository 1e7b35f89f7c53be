"""Recovery orchestration services."""
