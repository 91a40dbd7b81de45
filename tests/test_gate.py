import pytest

from sparkle.assistant.config import AssistantConfig
from sparkle.assistant.errors import PolicyViolation, RateLimitExceeded, ValidationError
from sparkle.assistant.gate import ContentPolicy, PromptGate, RateLimiter


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.parametrize("prompt", [None, "", "   \n"])
def test_empty_prompt_rejected(prompt):
    with pytest.raises(ValidationError):
        PromptGate().check(1, prompt)


def test_blocked_term_rejected():
    gate = PromptGate(policy=ContentPolicy(["forbidden"]))

    with pytest.raises(PolicyViolation) as exc:
        gate.check(1, "tell me something FORBIDDEN")

    # Policy violations are validation errors too
    assert isinstance(exc.value, ValidationError)


def test_per_minute_ceiling():
    clock = FakeClock()
    gate = PromptGate(rate_limiter=RateLimiter(per_minute=2, per_day=100, clock=clock))

    gate.check(1, "one")
    gate.check(1, "two")
    with pytest.raises(RateLimitExceeded) as exc:
        gate.check(1, "three")
    assert exc.value.retry_after == 61

    # Other users are unaffected
    gate.check(2, "hello")

    clock.now += 61
    assert gate.check(1, "four") == "four"


def test_per_day_ceiling():
    clock = FakeClock()
    limiter = RateLimiter(per_minute=10, per_day=3, clock=clock)

    for _ in range(3):
        assert limiter.check(1) == (True, None)
        clock.now += 120

    is_allowed, retry_after = limiter.check(1)
    assert not is_allowed
    assert retry_after > 60


def test_rejected_prompt_does_not_count_against_limit():
    clock = FakeClock()
    gate = PromptGate(
        rate_limiter=RateLimiter(per_minute=1, per_day=10, clock=clock),
        policy=ContentPolicy(["bad"]),
    )

    with pytest.raises(PolicyViolation):
        gate.check(1, "bad idea")

    assert gate.check(1, "good idea") == "good idea"


def test_from_config():
    config = AssistantConfig(rate_limit_per_min=1, rate_limit_daily=5, blocked_terms=("nope",))
    gate = PromptGate.from_config(config)

    with pytest.raises(PolicyViolation):
        gate.check(1, "nope")
    gate.check(1, "fine")
    with pytest.raises(RateLimitExceeded):
        gate.check(1, "again")
