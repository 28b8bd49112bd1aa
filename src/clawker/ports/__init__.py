"""Protocols for the external collaborators of the initialization pipeline."""
