"""
KPIWatch - KPI snapshot capture and threshold alerting for report dashboards.

Captures periodic metric snapshots for monitored reports, evaluates alert
thresholds against them, and notifies users through in-app and email channels.
"""

__version__ = "0.1.0"
