"""
Screenshot storage for failed steps.

Screenshots are written under the artifacts directory, one folder per
execution, and referenced on step results by their relative storage key.
"""

import time
import uuid
from pathlib import Path
from typing import Optional, Union

from ..core.config import Config
from ..core.logging_config import get_logger
from ..drivers.protocols import UIDriver


class ScreenshotStore:
    """Captures PNG screenshots from a UI driver and stores them on disk."""

    def __init__(self, artifacts_dir: Union[str, Path]):
        self.artifacts_root = Path(artifacts_dir)
        self.logger = get_logger(__name__)

    @classmethod
    def from_config(cls, config: Config) -> "ScreenshotStore":
        return cls(config.artifacts_dir)

    @staticmethod
    def build_key(execution_id: str, step_index: int) -> str:
        """Storage key: screenshots/<executionId>/step-<i>-<ms>-<uuid>.png"""
        timestamp = int(time.time() * 1000)
        return f"screenshots/{execution_id}/step-{step_index}-{timestamp}-{uuid.uuid4()}.png"

    def resolve(self, key: str) -> Path:
        return self.artifacts_root / key

    async def capture_and_store(
        self, driver: UIDriver, execution_id: str, step_index: int
    ) -> str:
        """
        Capture the current page and persist it.

        Args:
            driver: Driver to capture from
            execution_id: Execution the screenshot belongs to
            step_index: Index of the step that produced it

        Returns:
            Relative storage key of the written file
        """
        image = await driver.screenshot()
        key = self.build_key(execution_id, step_index)

        path = self.resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image)

        self.logger.info(
            f"Screenshot stored: {key}",
            extra={"metadata": {"execution_id": execution_id, "step_index": step_index}},
        )
        return key

    async def capture_and_store_safe(
        self, driver: Optional[UIDriver], execution_id: str, step_index: int
    ) -> Optional[str]:
        """Like capture_and_store but returns None instead of raising."""
        if driver is None:
            return None
        try:
            return await self.capture_and_store(driver, execution_id, step_index)
        except Exception as e:
            self.logger.warning(f"Failed to capture screenshot for step {step_index}: {e}")
            return None
