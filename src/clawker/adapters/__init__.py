"""Concrete adapters backing the ports."""
