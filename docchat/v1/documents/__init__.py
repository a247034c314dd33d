"""
Document indexing: models, the local pipeline and the processing job handlers.
"""
