"""
Prompt Gate

Pre-conditions checked before a prompt is accepted: a per-user rate limit
(per-minute and per-day ceilings) and a blocked-term content policy.
A rejection here happens before any operation or row exists.
"""

import time
from collections import defaultdict
from typing import Iterable, Optional

from .errors import PolicyViolation, RateLimitExceeded, ValidationError

MINUTE = 60
DAY = 24 * 60 * 60


class RateLimiter:
    """
    In-memory sliding-window limiter keyed by user id.

    Each accepted request is recorded once and counted against every window.
    """

    def __init__(self, per_minute: int, per_day: int, clock=time.time):
        self.windows = [(MINUTE, per_minute), (DAY, per_day)]
        self._clock = clock
        self._records: dict[int, list[float]] = defaultdict(list)

    def check(self, user_id: int) -> tuple[bool, Optional[int]]:
        """
        Check and record a request.

        Returns:
            A tuple (is_allowed, retry_after) where:
                - is_allowed: Boolean indicating if the request is allowed
                - retry_after: Seconds to wait before retrying, or None if allowed
        """
        now = self._clock()

        # Prune records older than the longest window
        longest = max(window for window, _ in self.windows)
        records = [t for t in self._records[user_id] if t >= now - longest]
        self._records[user_id] = records

        for window, limit in self.windows:
            in_window = [t for t in records if t >= now - window]
            if len(in_window) >= limit:
                retry_after = int(in_window[0] + window - now) + 1
                return False, max(1, retry_after)

        records.append(now)
        return True, None


class ContentPolicy:
    """Rejects prompts containing any blocked term (case-insensitive substring)."""

    def __init__(self, blocked_terms: Iterable[str]):
        self.blocked_terms = tuple(t.lower() for t in blocked_terms if t)

    def is_allowed(self, prompt: str) -> bool:
        lowered = prompt.lower()
        return not any(term in lowered for term in self.blocked_terms)


class PromptGate:
    """
    Validates a prompt and applies the rate limit and content policy.

    Either collaborator may be None to skip that check.
    """

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        policy: Optional[ContentPolicy] = None,
    ):
        self.rate_limiter = rate_limiter
        self.policy = policy

    @classmethod
    def from_config(cls, config) -> "PromptGate":
        return cls(
            rate_limiter=RateLimiter(config.rate_limit_per_min, config.rate_limit_daily),
            policy=ContentPolicy(config.blocked_terms),
        )

    def check(self, user_id: int, prompt: Optional[str]) -> str:
        """
        Return the prompt if it may be processed.

        Raises:
            ValidationError: Prompt is missing or blank
            PolicyViolation: Prompt contains blocked content
            RateLimitExceeded: User is over a ceiling
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Empty prompt")

        if self.policy is not None and not self.policy.is_allowed(prompt):
            raise PolicyViolation("Content policy violation")

        if self.rate_limiter is not None:
            is_allowed, retry_after = self.rate_limiter.check(user_id)
            if not is_allowed:
                raise RateLimitExceeded(
                    "Rate limit exceeded. Please try again later.",
                    retry_after=retry_after,
                )

        return prompt
