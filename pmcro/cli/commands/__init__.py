"""PMCR-O CLI commands."""
