"""Performance computation services."""
