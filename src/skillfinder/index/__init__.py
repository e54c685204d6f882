"""Search engines and their supporting infrastructure."""
