"""Integrations with storage outside the federation core."""
