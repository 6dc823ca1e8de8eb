"""Digest assembly and grouping."""
