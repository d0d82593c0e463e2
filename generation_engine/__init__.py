"""
Generation Engine - Multi-Provider Content Generation Orchestration

Routes generation requests across several LLM vendors behind one contract,
runs multi-step and multi-branch generation workflows, and records every
output in a tree of selectable alternatives.
"""

__version__ = "1.0.0"
__author__ = "Generation Engine Team"
