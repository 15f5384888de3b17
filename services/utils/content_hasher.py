"""
Content hashing utilities for stable page change detection
"""
import hashlib
from typing import Optional, Tuple

from ..models import ChangeStatus
from ..normalizer import HtmlNormalizer


class ContentHasher:
    def __init__(self, normalizer: Optional[HtmlNormalizer] = None):
        self.normalizer = normalizer or HtmlNormalizer()

    @staticmethod
    def digest(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def generate_full_hash(self, normalized_html: str) -> str:
        """Hash of the complete normalized document, markup included."""
        return self.digest(normalized_html)

    def generate_content_hash(self, normalized_html: str) -> str:
        """
        Hash of the presentation-insensitive view of the document.
        Immune to class/style/attribute churn while capturing content changes.
        """
        return self.digest(self.normalizer.content_view(normalized_html))

    def generate_hashes(self, normalized_html: str) -> Tuple[str, str]:
        return (
            self.generate_full_hash(normalized_html),
            self.generate_content_hash(normalized_html),
        )

    @staticmethod
    def has_content_changed(current_hash: str, previous_hash: Optional[str]) -> bool:
        """Check if content has changed based on hash comparison"""
        if previous_hash is None:
            return True  # New content
        return current_hash != previous_hash

    @staticmethod
    def compute_change_status(
        new_full_hash: str,
        new_content_hash: str,
        prev_full_hash: Optional[str],
        prev_content_hash: Optional[str],
    ) -> ChangeStatus:
        if not prev_full_hash or not prev_content_hash:
            return ChangeStatus.CONTENT_CHANGED  # First scan

        if new_full_hash == prev_full_hash:
            return ChangeStatus.NO_CHANGE

        if new_content_hash == prev_content_hash:
            return ChangeStatus.TECH_CHANGE_ONLY

        return ChangeStatus.CONTENT_CHANGED
