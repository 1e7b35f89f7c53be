"""Local order store access and bookmark persistence."""
