"""Human-like reading and typing delays."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass

from relaybot.config.schema import BehaviorConfig
from relaybot.store.models import PlatformIntegration

# WhatsApp anti-detection: ~40 wpm is about 200 characters per minute.
TYPING_CHARS_PER_MINUTE = 200
TYPING_TIME_CAP_MS = 5000
TYPING_VARIANCE_MS = 500
MIN_ANTI_DETECTION_DELAY_MS = 500


def random_delay(min_ms: int, max_ms: int) -> int:
    """Uniform integer in [min_ms, max_ms], inclusive."""
    low, high = sorted((int(min_ms), int(max_ms)))
    return random.randint(low, high)


@dataclass
class HumanBehavior:
    """Delay parameters for one integration."""

    typing_delay_min: int = 500
    typing_delay_max: int = 2000
    reading_delay_per_char_ms: int = 20
    delay_cap_ms: int = 3000
    random_pause_probability: float = 0.15
    random_pause_min_ms: int = 500
    random_pause_max_ms: int = 1500
    enabled: bool = True

    @classmethod
    def for_integration(
        cls, integration: PlatformIntegration, config: BehaviorConfig | None = None
    ) -> HumanBehavior:
        config = config or BehaviorConfig()
        return cls(
            typing_delay_min=integration.typing_delay_min,
            typing_delay_max=integration.typing_delay_max,
            reading_delay_per_char_ms=config.reading_delay_per_char_ms,
            delay_cap_ms=config.delay_cap_ms,
            random_pause_probability=config.random_pause_probability,
            random_pause_min_ms=config.random_pause_min_ms,
            random_pause_max_ms=config.random_pause_max_ms,
            enabled=config.enabled,
        )


def compute_delay_ms(profile: HumanBehavior, text_length: int) -> int:
    """
    Base delay plus a length-proportional part plus an occasional pause.

    base is uniform in [typing_delay_min, typing_delay_max]; the length part is
    capped at `delay_cap_ms`; the pause is added with `random_pause_probability`.
    """
    base = random_delay(profile.typing_delay_min, profile.typing_delay_max)
    reading = min(max(0, text_length) * profile.reading_delay_per_char_ms, profile.delay_cap_ms)
    pause = 0
    if random.random() < profile.random_pause_probability:
        pause = random_delay(profile.random_pause_min_ms, profile.random_pause_max_ms)
    return base + reading + pause


async def simulate_delay(profile: HumanBehavior, text_length: int) -> int:
    """Sleep for `compute_delay_ms`; returns the milliseconds waited."""
    if not profile.enabled:
        return 0
    delay_ms = compute_delay_ms(profile, text_length)
    await asyncio.sleep(delay_ms / 1000)
    return delay_ms


def whatsapp_anti_detection_delay_ms(profile: HumanBehavior, text_length: int) -> int:
    """Typing time at human speed (capped) plus base delay and +/- variance, at least 500 ms."""
    typing_ms = min(max(0, text_length) / TYPING_CHARS_PER_MINUTE * 60_000, TYPING_TIME_CAP_MS)
    variance = random_delay(-TYPING_VARIANCE_MS, TYPING_VARIANCE_MS)
    base = random_delay(profile.typing_delay_min, profile.typing_delay_max)
    return max(int(typing_ms + base + variance), MIN_ANTI_DETECTION_DELAY_MS)


async def whatsapp_anti_detection_delay(profile: HumanBehavior, text_length: int) -> int:
    if not profile.enabled:
        return 0
    delay_ms = whatsapp_anti_detection_delay_ms(profile, text_length)
    await asyncio.sleep(delay_ms / 1000)
    return delay_ms
