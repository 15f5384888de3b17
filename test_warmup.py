"""
Tests for the scroll warmup run before each capture
"""
from typing import List

import pytest

from services.config import RendererConfig
from services.utils.warmup import warmup_page_by_scrolling


class FakePage:
    """Answers each sweep with the next scroll height and records every script."""

    def __init__(self, heights: List[int]):
        self.heights = list(heights)
        self.scripts: List[str] = []

    async def evaluate(self, script: str):
        self.scripts.append(script)
        if script == "window.scrollTo(0, 0)":
            return None
        return self.heights.pop(0)

    @property
    def sweeps(self) -> int:
        return sum(1 for script in self.scripts if script != "window.scrollTo(0, 0)")


def make_config(max_passes: int) -> RendererConfig:
    return RendererConfig(warmup_max_passes=max_passes, warmup_settle_ms=0, warmup_delay_ms=0)


@pytest.mark.asyncio
async def test_growing_page_stops_at_max_passes():
    page = FakePage([1000, 2000, 3000, 4000, 5000])

    result = await warmup_page_by_scrolling(page, make_config(3))

    assert result.passes == 3
    assert result.final_height == 3000
    assert page.sweeps == 3
    assert page.scripts[-1] == "window.scrollTo(0, 0)"


@pytest.mark.asyncio
async def test_flat_page_stops_after_second_pass():
    page = FakePage([1500, 1500, 1500, 1500])

    result = await warmup_page_by_scrolling(page, make_config(4))

    assert result.passes == 2
    assert result.final_height == 1500
    assert page.sweeps == 2
    assert page.scripts[-1] == "window.scrollTo(0, 0)"


@pytest.mark.asyncio
async def test_sweep_script_carries_configured_timing():
    page = FakePage([800])
    config = RendererConfig(
        warmup_max_passes=1, warmup_settle_ms=0, warmup_delay_ms=125, warmup_step_ratio=0.5
    )

    result = await warmup_page_by_scrolling(page, config)

    assert result.passes == 1
    assert "const waitMs = 125;" in page.scripts[0]
    assert "const ratio = 0.5;" in page.scripts[0]
