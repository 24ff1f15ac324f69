"""SOS flare policy constants."""

from __future__ import annotations

from datetime import timedelta

# Minimum interval between two flares by the same user
COOLDOWN = timedelta(hours=24)

# Time a flare waits for human hype before the AI fallback may fire
GRACE_WINDOW = timedelta(minutes=10)

# Text bounds, in code points
MAX_DESCRIPTION_LENGTH = 1024
MAX_HYPE_MESSAGE_LENGTH = 512
MAX_EMOJI_LENGTH = 16

# Daily hype cap by tribe size: (inclusive upper bound on member count, cap)
HYPE_CAP_TIERS = (
    (10, 100),
    (50, 20),
    (200, 10),
)
# Mega tribes, and flares with no tribe at all
HYPE_CAP_UNBOUNDED = 5

# Recipients per push batch during tribe fan-out
FANOUT_BATCH_SIZE = 500

# Fallback names when the directory has nothing better
ANONYMOUS_SENDER_NAME = "A tribe member"
UNKNOWN_HYPE_SENDER_NAME = "A friend"

DEFAULT_HYPE_BODY = "You've got this! Keep pushing!"
