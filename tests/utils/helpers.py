"""
Test Helpers
============

Helper functions for common testing operations.
"""

import asyncio
import io
import time
from pathlib import Path
from typing import Callable, Tuple

from PIL import Image


async def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 10.0,
    interval: float = 0.01,
    error_message: str = "Condition not met within timeout",
) -> None:
    """Wait for a condition to become true."""
    start_time = time.time()

    while time.time() - start_time < timeout:
        if condition():
            return
        await asyncio.sleep(interval)

    raise TimeoutError(error_message)


def create_test_png_file(
    width: int = 100, height: int = 100, color: Tuple[int, int, int, int] = (255, 0, 0, 255)
) -> bytes:
    """Create a valid RGBA PNG for testing."""
    output = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(output, format="PNG")
    return output.getvalue()


def list_temp_files(directory: Path) -> list:
    """Leftover temporary artifacts in a cache directory."""
    return sorted(p.name for p in directory.iterdir() if p.name.endswith(".tmp"))
