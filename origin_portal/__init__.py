"""
State of Origin certificate portal.

Citizen registration, application lifecycle, Paystack fee collection and
public certificate verification.
"""

__version__ = "0.1.0"
