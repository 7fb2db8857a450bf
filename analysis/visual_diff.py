"""Visual change detection.

Compares the two most recent Captures of every Screen of a product and
flags the newest one when enough pixels moved.
"""

from __future__ import annotations

import io
from typing import Optional, Tuple

import numpy as np
from loguru import logger
from PIL import Image

from config.settings import settings
from models.errors import StoreError
from models.mirror import DiffResult, DiffRunSummary, Screen
from storage.base import MirrorStore

# Squared YIQ distance between pure black and pure white
MAX_YIQ_DELTA = 35215.0


def _load_rgba(png: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(png)) as image:
        return np.asarray(image.convert("RGBA"), dtype=np.float64)


def _blend_on_white(rgba: np.ndarray) -> np.ndarray:
    alpha = rgba[..., 3:4] / 255.0
    return 255.0 + (rgba[..., :3] - 255.0) * alpha


def _yiq(rgb: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    y = r * 0.29889531 + g * 0.58662247 + b * 0.11448223
    i = r * 0.59597799 - g * 0.27417610 - b * 0.32180189
    q = r * 0.21147017 - g * 0.52261711 + b * 0.31114694
    return y, i, q


def pixel_diff(before: bytes, after: bytes, threshold: Optional[float] = None) -> Tuple[int, int]:
    """
    Count perceptually different pixels between two PNGs.

    Both images are cropped to their shared top-left region. A pixel differs
    when its YIQ colour distance exceeds ``threshold`` (0..1) of the maximum
    possible distance. Anti-aliasing is not treated specially.

    Returns:
        (diff_pixels, total_pixels) for the compared region.
    """
    threshold = settings.pixel_threshold if threshold is None else threshold
    a = _load_rgba(before)
    b = _load_rgba(after)

    height = min(a.shape[0], b.shape[0])
    width = min(a.shape[1], b.shape[1])
    total = width * height
    if total == 0:
        return 0, 0
    a = _blend_on_white(a[:height, :width])
    b = _blend_on_white(b[:height, :width])

    y1, i1, q1 = _yiq(a)
    y2, i2, q2 = _yiq(b)
    delta = 0.5053 * (y1 - y2) ** 2 + 0.299 * (i1 - i2) ** 2 + 0.1957 * (q1 - q2) ** 2

    max_delta = MAX_YIQ_DELTA * threshold * threshold
    return int(np.count_nonzero(delta > max_delta)), total


def change_summary(diff_percentage: float) -> str:
    if diff_percentage == 0:
        return "No changes detected"
    if diff_percentage < 1:
        return "Minor changes detected"
    if diff_percentage < 5:
        return "Moderate changes detected"
    if diff_percentage < 20:
        return "Significant changes detected"
    return "Major changes detected"


class VisualDiffDetector:
    """
    Stateless-per-run detector over a MirrorStore.

    Screens with fewer than two Captures are skipped. Comparison failures
    are logged and skipped so one bad screenshot does not stop the run.
    """

    def __init__(
        self,
        store: MirrorStore,
        threshold: Optional[float] = None,
        change_threshold_percent: Optional[float] = None,
    ) -> None:
        self._store = store
        self._threshold = settings.pixel_threshold if threshold is None else threshold
        self._change_threshold = (
            settings.change_threshold_percent
            if change_threshold_percent is None
            else change_threshold_percent
        )

    async def compare(self, screen: Screen) -> Optional[DiffResult]:
        """Diff the latest Capture of ``screen`` against the one before it."""
        captures = await self._store.latest_captures(screen.id, limit=2)
        if len(captures) < 2:
            return None
        latest, previous = captures[0], captures[1]

        before = await self._store.download_screenshot(previous.screenshot_url)
        after = await self._store.download_screenshot(latest.screenshot_url)
        diff_pixels, total_pixels = pixel_diff(before, after, self._threshold)

        diff_percentage = round((diff_pixels / total_pixels) * 100, 2) if total_pixels else 0.0
        has_changes = diff_percentage > self._change_threshold
        summary = change_summary(diff_percentage)

        await self._store.update_capture_changes(
            latest.id, has_changes, summary if has_changes else None
        )
        return DiffResult(
            route_id=screen.id,
            capture_id=latest.id,
            diff_pixels=diff_pixels,
            total_pixels=total_pixels,
            diff_percentage=diff_percentage,
            summary=summary,
            has_changes=has_changes,
        )

    async def detect_for_product(self, product_id: str) -> DiffRunSummary:
        logger.info(f"Detecting changes for product {product_id}")
        screens = await self._store.list_screens(product_id)
        run = DiffRunSummary(product_id=product_id)

        for screen in screens:
            try:
                result = await self.compare(screen)
            except (StoreError, OSError) as exc:
                logger.error(f"  {screen.path}: comparison failed: {exc}")
                run.skipped += 1
                continue
            if result is None:
                logger.debug(f"  {screen.path}: fewer than 2 captures, skipping")
                run.skipped += 1
                continue

            run.checked += 1
            if result.has_changes:
                run.changed += 1
                logger.info(f"  {screen.path}: {result.diff_percentage}% changed - {result.summary}")
            else:
                logger.debug(f"  {screen.path}: no significant changes")

        logger.success(
            f"Change detection done: {run.checked} checked, {run.changed} changed, "
            f"{run.unchanged} unchanged, {run.skipped} skipped."
        )
        return run
