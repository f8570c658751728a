"""Service layer for the context engine."""
