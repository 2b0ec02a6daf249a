"""
Memory module - layered agent memory.

Layers:
- working: Current conversation, compacted under a token budget
- semantic: Embedded facts, preferences and procedures with decay
- episodic: One structured summary per finished session
- orchestrator: Recall before a model call, extraction after it

Storage: SQLite (aiosqlite) through an explicitly owned MemoryDatabase handle
"""
