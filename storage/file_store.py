"""File-based storage utilities for reading bot configuration.

Provides a YAMLFileStore class for reading YAML configuration files.
"""
import logging
import os
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)


class YAMLFileStore:
    """Reads a YAML mapping from disk.

    Attributes:
        path: Path to the YAML file
    """
    def __init__(self, path: str) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if the YAML file exists."""
        return os.path.exists(self.path)

    def read(self) -> Dict[str, Any]:
        """Read and parse the YAML file.

        Returns:
            Parsed YAML data as dictionary, or empty dict on error
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            return {}
        except (OSError, yaml.YAMLError):
            logger.exception("Failed to read YAML file %s", self.path)
            return {}
