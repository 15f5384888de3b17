"""
Scroll warmup to trigger lazy-loaded content before a capture
"""
import asyncio
import json
from typing import Optional

from pydantic import BaseModel

from ..config import RendererConfig, renderer_config

_SWEEP_SCRIPT = """
(async () => {{
  const ratio = {step_ratio};
  const waitMs = {delay_ms};

  function getScrollHeight() {{
    const bodyHeight = document.body && document.body.scrollHeight ? document.body.scrollHeight : 0;
    const docHeight = document.documentElement && document.documentElement.scrollHeight ? document.documentElement.scrollHeight : 0;
    return Math.max(bodyHeight, docHeight);
  }}

  const viewportHeight = Math.max(window.innerHeight || 0, 1);
  const step = Math.max(Math.floor(viewportHeight * ratio), 100);
  let targetHeight = getScrollHeight();

  for (let scrollY = 0; scrollY <= targetHeight; scrollY += step) {{
    window.scrollTo(0, scrollY);
    await new Promise((resolve) => setTimeout(resolve, waitMs));
    targetHeight = Math.max(targetHeight, getScrollHeight());
  }}

  window.scrollTo(0, targetHeight);
  await new Promise((resolve) => setTimeout(resolve, waitMs));
  return getScrollHeight();
}})()
"""


class WarmupResult(BaseModel):
    passes: int
    final_height: int


async def warmup_page_by_scrolling(page, config: Optional[RendererConfig] = None) -> WarmupResult:
    """
    Sweep the page top to bottom, repeating while the page keeps growing.

    Stops after max passes or as soon as a pass does not increase the page
    height, then scrolls back to the top and waits for the page to settle.
    """
    config = config or renderer_config
    script = _SWEEP_SCRIPT.format(
        step_ratio=json.dumps(config.warmup_step_ratio),
        delay_ms=json.dumps(config.warmup_delay_ms),
    )

    previous_height = 0
    passes = 0
    for pass_index in range(max(config.warmup_max_passes, 1)):
        passes += 1
        final_height = int(await page.evaluate(script) or 0)
        grew = final_height > previous_height
        previous_height = final_height
        if pass_index > 0 and not grew:
            break

    await page.evaluate("window.scrollTo(0, 0)")
    await asyncio.sleep(config.warmup_settle_ms / 1000)
    return WarmupResult(passes=passes, final_height=previous_height)
