"""
Quota Refill.

Daily reconciliation job that refills key quotas on their refill day.
"""

__version__ = "0.1.0"
