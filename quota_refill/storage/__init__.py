"""
Storage layer for quota keys and the local audit ledger.
"""
