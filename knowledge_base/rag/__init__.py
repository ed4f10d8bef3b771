"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Plain-text extraction from uploads
- Paragraph-aware chunking with overlap
- Batched embedding generation
- FAISS vector storage
- Semantic retrieval
- Grounded answer composition
"""
