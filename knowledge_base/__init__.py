"""Document knowledge base with retrieval-augmented question answering."""
