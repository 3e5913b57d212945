"""Command-line interface for i3mux."""
