"""
Helpers for testing code built on ratelimit_operator
"""
