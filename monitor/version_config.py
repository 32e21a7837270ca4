import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional
from fiber.logging_utils import get_logger

logger = get_logger(__name__)

MAX_VERSION_SCORE = 15
DEFAULT_FALLBACK_SCORE = 3

# Update as new releases ship; latest stable gets the full 15 points.
DEFAULT_VERSION_SCORES: Dict[str, float] = {
    "0.8.0": 15,
    "0.7.3": 13,
    "0.7.2": 11,
    "0.7.1": 9,
    "0.7.0": 7,
    "0.6.x": 5,
}


@dataclass
class VersionScoreTable:
    """Points awarded per exact software version string."""

    scores: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_VERSION_SCORES)
    )
    fallback_score: float = DEFAULT_FALLBACK_SCORE
    latest_version: Optional[str] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        for version, points in self.scores.items():
            if not 0 <= points <= MAX_VERSION_SCORE:
                raise ValueError(
                    f"Version score must be between 0 and {MAX_VERSION_SCORE}, "
                    f"got {points} for {version}"
                )
        if not 0 <= self.fallback_score <= MAX_VERSION_SCORE:
            raise ValueError(
                f"Fallback score must be between 0 and {MAX_VERSION_SCORE}, "
                f"got {self.fallback_score}"
            )
        if self.latest_version is None and self.scores:
            # First entry wins on equal points, matching dict order in config files
            self.latest_version = max(self.scores, key=lambda v: self.scores[v])

    def score(self, version: str) -> float:
        """Exact-match lookup; unknown versions get the fallback score."""
        return self.scores.get(version, self.fallback_score)

    def is_latest(self, version: str) -> bool:
        return self.latest_version is not None and version == self.latest_version

    @classmethod
    def from_dict(cls, data: Dict) -> "VersionScoreTable":
        return cls(
            scores=dict(data.get("scores", DEFAULT_VERSION_SCORES)),
            fallback_score=data.get("fallback_score", DEFAULT_FALLBACK_SCORE),
            latest_version=data.get("latest_version"),
        )

    @classmethod
    def from_file(cls, path: str) -> "VersionScoreTable":
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
        table = cls.from_dict(data)
        logger.info(
            f"Loaded {len(table.scores)} version scores from {path} "
            f"(latest: {table.latest_version})"
        )
        return table


def load_version_table(path: Optional[str] = None) -> VersionScoreTable:
    """
    Load the version score table from ``path`` or ``VERSION_SCORES_FILE``,
    falling back to the built-in map when neither is set or readable.
    """
    path = path or os.getenv("VERSION_SCORES_FILE")
    if not path:
        return VersionScoreTable()

    try:
        return VersionScoreTable.from_file(path)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.error(f"Failed to load version scores from {path}: {e}")
        logger.warning("Using built-in version score table")
        return VersionScoreTable()
