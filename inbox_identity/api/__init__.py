"""HTTP surface for duplicate discovery and merge."""
