"""
Discord surfaces for Redeem Panel.

Slash-command intake and the reviewer channel.
"""
