"""
Content safety check run before an upload is promoted
"""

from abc import ABC, abstractmethod
from typing import NamedTuple, Optional


class ScanResult(NamedTuple):
    clean: bool
    details: Optional[str] = None


class ContentScanner(ABC):
    """Abstract content scanner."""

    @abstractmethod
    async def scan(self, bucket: str, key: str) -> ScanResult:
        """Scan a stored object.

        Args:
            bucket: Bucket holding the object
            key: Object key

        Returns:
            ScanResult; a not-clean result blocks promotion
        """
        pass


class PassThroughScanner(ContentScanner):
    """Scanner that reports every object clean."""

    async def scan(self, bucket: str, key: str) -> ScanResult:
        return ScanResult(clean=True)
