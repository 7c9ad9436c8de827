"""Retrieval, context assembly, prompts and the model client."""
