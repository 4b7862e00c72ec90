"""
Syntactic validation of redeem submissions.

Only the shape of the input is checked here; used keys and throttling are
business state handled by the lifecycle.
"""

import re
from typing import List

NAME_MAX_LENGTH = 100
REDEEM_KEY_MAX_LENGTH = 100

REDEEM_KEY_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
# Shared by every intake path
INVITE_LINK_PATTERN = re.compile(r"https://discord\.gg/[A-Za-z0-9]+")


def is_valid_discord_invite(link: str) -> bool:
    """True if the link is exactly https://discord.gg/<alphanumeric>."""
    return INVITE_LINK_PATTERN.fullmatch(link) is not None


def validate_submission(name: str, redeem_key: str, invite_link: str) -> List[str]:
    """Check every field and collect all violated rules.

    Inputs are expected to be stripped by the caller.

    Args:
        name: Submitter display name
        redeem_key: One-time redeem token
        invite_link: Discord invite URL

    Returns:
        One message per violated rule (empty if the input is well formed)
    """
    errors = []

    if not 1 <= len(name) <= NAME_MAX_LENGTH:
        errors.append(f"Name must be between 1 and {NAME_MAX_LENGTH} characters")

    if not 1 <= len(redeem_key) <= REDEEM_KEY_MAX_LENGTH:
        errors.append(
            f"Redeem key must be between 1 and {REDEEM_KEY_MAX_LENGTH} characters"
        )
    elif REDEEM_KEY_PATTERN.fullmatch(redeem_key) is None:
        errors.append(
            "Redeem key can only contain letters, numbers, hyphens, and underscores"
        )

    if not invite_link.startswith("https://"):
        errors.append("Invite link must be a valid HTTPS URL")
    if not is_valid_discord_invite(invite_link):
        errors.append("Invite link must be a valid Discord.gg invite URL")

    return errors
