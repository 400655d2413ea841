"""Domain types for the analysis lifecycle."""
