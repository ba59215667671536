"""
Browser automation module exports.
"""

from browserflow.browser.actions import PlaywrightActionExecutor
from browserflow.browser.driver import PlaywrightDriver
from browserflow.browser.snapshot import PageSnapshotProvider

__all__ = [
    "PlaywrightDriver",
    "PlaywrightActionExecutor",
    "PageSnapshotProvider",
]
