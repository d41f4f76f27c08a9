"""
Configuration loading for Quota Refill.
"""
