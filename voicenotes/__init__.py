"""Backend package: DB models, pipelines, APIs.

This package orchestrates audio upload, transcription, LLM extraction,
embeddings and similarity search for voice notes.
"""
