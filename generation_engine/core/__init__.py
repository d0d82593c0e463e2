"""Core data models for the generation engine."""
