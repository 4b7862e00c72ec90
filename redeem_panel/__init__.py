"""
Redeem Panel.

One-time redeem keys submitted with a Discord invite, reviewed by an admin
through Discord buttons.
"""

__version__ = "1.0.0"
