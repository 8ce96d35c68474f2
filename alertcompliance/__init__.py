"""
Alert generator compliance tester.

Drives a synthetic workload into an alerting backend and checks every
observable effect against closed-form expectations.
"""

__version__ = "0.1.0"
