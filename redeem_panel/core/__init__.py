"""
Core modules for Redeem Panel.

This package contains the request lifecycle, the intake throttling
policies and input validation.
"""
