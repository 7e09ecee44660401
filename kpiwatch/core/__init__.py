"""Core snapshot, alerting and notification logic for KPIWatch."""
