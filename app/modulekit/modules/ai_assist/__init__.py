"""
AI Assist: ask an LLM for a fix to a broken source file, apply it, roll it back.

Every write is preceded by an in-memory backup of the file's previous content.
"""
