"""Article fetching, rendering and routing rules."""
