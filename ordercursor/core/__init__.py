"""Remote API access, navigation and search strategies."""
