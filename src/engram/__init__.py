"""
Engram - layered memory for LLM-driven agents.

Package structure:
- core: config, logging, errors, shared typing
- memory: working context, semantic store, episodic log, orchestrator
- llm: LLM provider abstraction and model-backed capabilities
"""

__version__ = "0.1.0"
