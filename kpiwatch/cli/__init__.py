"""Command-line interface for KPIWatch."""
