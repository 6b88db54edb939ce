"""Tag and untag files stored in a Perkeep server."""
