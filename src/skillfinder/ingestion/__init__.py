"""Reading skill reference documents from disk."""
