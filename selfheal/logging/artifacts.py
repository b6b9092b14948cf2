from __future__ import annotations

import logging
import shutil
from datetime import UTC, datetime
from pathlib import Path

from selenium.common.exceptions import WebDriverException

logger = logging.getLogger(__name__)


class ArtifactManager:
    """Stores the page source and a screenshot for each heal attempt."""

    def __init__(self, root: str | Path = "artifacts") -> None:
        self.root = Path(root)
        self.dom_root = self.root / "dom_snapshots"
        self.screenshot_root = self.root / "screenshots"
        self._ensure_structure()

    def _ensure_structure(self) -> None:
        self.dom_root.mkdir(parents=True, exist_ok=True)
        self.screenshot_root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def timestamp() -> str:
        return datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")

    def capture(self, driver, fingerprint: str) -> dict[str, str]:
        """Returns the paths written; capture problems are logged and skipped."""

        stamp = self.timestamp()
        paths: dict[str, str] = {}
        try:
            dom_path = self.dom_root / f"{stamp}_{fingerprint}.html"
            dom_path.write_text(driver.page_source or "", encoding="utf-8")
            paths["dom_snapshot"] = str(dom_path)
        except (WebDriverException, OSError) as exc:
            logger.warning("Could not store DOM snapshot for %s: %s", fingerprint, exc)
        try:
            screenshot_path = self.screenshot_root / f"{stamp}_{fingerprint}.png"
            if driver.save_screenshot(str(screenshot_path)):
                paths["screenshot"] = str(screenshot_path)
        except (WebDriverException, OSError) as exc:
            logger.warning("Could not store screenshot for %s: %s", fingerprint, exc)
        return paths

    def reset(self) -> Path:
        self._ensure_structure()
        for directory in (self.dom_root, self.screenshot_root):
            for child in directory.iterdir():
                if child.is_dir():
                    shutil.rmtree(child)
                elif child.name != ".gitkeep":
                    child.unlink()
        return self.root
