"""
Human-like mouse, scroll and keyboard behaviour for Playwright pages.
"""

import random
import re
from typing import Any, Optional

from playwright.async_api import Error as PlaywrightError, Page

_PUNCTUATION = re.compile(r"[.,!?;:]")
_TYPO_KEYS = "qwertyuiopasdfghjklzxcvbnm"


def random_between(low: float, high: float) -> float:
    """Uniform random float in ``[low, high)``."""
    return low + random.random() * (high - low)


def base_delay(ms: float, step: int = 0, fatigue: bool = False) -> float:
    """
    Jittered delay in milliseconds.

    With ``fatigue`` the delay grows by 10% per executed step and
    occasionally gains a micro pause.
    """
    multiplier = 1 + step * 0.1 if fatigue else 1
    micro_pause = random_between(120, 480) if fatigue and random.random() < 0.08 else 0
    return (ms + random.random() * 140) * multiplier + micro_pause


def parse_coords(raw: Any) -> Optional[tuple]:
    """Parse an ``"x,y"`` target into a float pair, or None for selectors."""
    if not raw or not isinstance(raw, str):
        return None
    match = re.match(r"^(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)$", raw.strip())
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


async def move_mouse_humanlike(page: Page, target_x: float, target_y: float) -> None:
    """Move along a jittered quadratic bezier ending at the target."""
    steps = 8 + random.randint(0, 5)
    start_x = target_x + (random.random() - 0.5) * 120
    start_y = target_y + (random.random() - 0.5) * 120
    ctrl_x = (start_x + target_x) / 2 + (random.random() - 0.5) * 80
    ctrl_y = (start_y + target_y) / 2 + (random.random() - 0.5) * 80

    for i in range(1, steps + 1):
        t = i / steps
        inv = 1 - t
        x = inv * inv * start_x + 2 * inv * t * ctrl_x + t * t * target_x
        y = inv * inv * start_y + 2 * inv * t * ctrl_y + t * t * target_y
        await page.mouse.move(
            x + (random.random() - 0.5) * 2,
            y + (random.random() - 0.5) * 2,
            steps=1,
        )


async def idle_mouse(page: Page) -> None:
    """Drift the cursor between a few random points, pausing now and then."""
    viewport = page.viewport_size or {"width": 1280, "height": 720}
    width, height = viewport["width"], viewport["height"]
    x = random.random() * width
    y = random.random() * height

    for _ in range(3 + random.randint(0, 2)):
        target_x = random.random() * width
        target_y = random.random() * height
        steps = 20 + random.randint(0, 19)
        for s in range(steps):
            x += (target_x - x) / (steps - s)
            y += (target_y - y) / (steps - s)
            await page.mouse.move(x, y, steps=1)
        if random.random() < 0.4:
            await page.wait_for_timeout(200 + random.random() * 600)


async def overshoot_scroll(page: Page, target_y: float) -> None:
    """Scroll past the target, settle back, and sometimes nudge again."""
    direction = 1 if random.random() > 0.5 else -1
    overshoot = direction * (40 + random.randint(0, 119))

    scroll_to = "(y) => window.scrollTo({ top: y, behavior: 'smooth' })"
    await page.evaluate(scroll_to, target_y + overshoot)
    await page.wait_for_timeout(250 + random.random() * 400)
    await page.evaluate(scroll_to, target_y)
    if random.random() < 0.35:
        await page.wait_for_timeout(120 + random.random() * 200)
        await page.evaluate(
            "(y) => window.scrollBy({ top: y, behavior: 'smooth' })",
            (random.random() - 0.5) * 60,
        )


async def _type_char(page: Page, char: str, delay: float) -> None:
    try:
        await page.keyboard.press(char, delay=delay)
    except PlaywrightError:
        # Characters without a key definition
        await page.keyboard.insert_text(char)
        if delay:
            await page.wait_for_timeout(delay)


async def human_type(
    page: Page,
    selector: Optional[str],
    text: str,
    allow_typos: bool = False,
    natural_typing: bool = False,
    fatigue: bool = False,
) -> None:
    """
    Type ``text`` one key at a time.

    Args:
        page: Target page
        selector: Element to focus first; the focused element when None
        text: Text to type
        allow_typos: Occasionally hit a wrong key and correct it
        natural_typing: Type in bursts with pauses between them
        fatigue: Add rare longer pauses
    """
    if selector:
        await page.focus(selector)

    burst_counter = 0
    burst_limit = int(random_between(6, 16)) if natural_typing else 999
    delay = random_between(12, 55) if natural_typing else random_between(25, 80)
    typo_rate = 0.1 if natural_typing else 0.04

    for char in text:
        if natural_typing and burst_counter >= burst_limit:
            await page.wait_for_timeout(random_between(60, 180))
            burst_counter = 0

        if allow_typos and random.random() < typo_rate:
            typo = random.choice(_TYPO_KEYS)
            await page.keyboard.press(typo, delay=40 + random.random() * 120)
            if random.random() < 0.5:
                await page.wait_for_timeout(60 + random.random() * 120)
            await page.keyboard.press("Backspace", delay=40 + random.random() * 120)
            if random.random() < 0.3:
                await page.keyboard.press(typo, delay=40 + random.random() * 120)
                await page.keyboard.press("Backspace", delay=40 + random.random() * 120)

        extra = random_between(60, 150) if _PUNCTUATION.match(char) else random_between(0, 40)
        fatigue_pause = random_between(90, 200) if fatigue and random.random() < 0.06 else 0
        await _type_char(page, char, delay + extra + fatigue_pause)
        burst_counter += 1

        if natural_typing and char == " ":
            await page.wait_for_timeout(random_between(20, 80))
