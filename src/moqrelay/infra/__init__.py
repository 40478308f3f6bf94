"""
Infrastructure layer - logging, settings, and error types.

This layer contains technical concerns shared by the catalog, transport and
runtime packages.
"""
