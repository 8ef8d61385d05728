"""Channel name matching utilities.

Provides normalization for comparing configured channel names with the
names reported by Slack.
"""


def normalize_channel_name(s: str) -> str:
    """
    Normalize a channel name for matching.
    - strip leading/trailing whitespace
    - drop a leading '#'
    - lower-case
    """
    return s.strip().lstrip("#").lower()
