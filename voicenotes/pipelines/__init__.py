"""Background pipeline for voice notes: upload, transcription, extraction, embeddings, search.

Each stage is callable independently and schedules its successors only after
committing its own results.
"""
