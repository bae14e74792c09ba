"""Command line interface for PMCR-O."""
