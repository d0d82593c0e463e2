"""
External service integrations for the generation engine.

This module contains the clients that reach LLM providers.
"""
