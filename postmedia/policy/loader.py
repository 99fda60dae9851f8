"""
Policy Loader — Load and validate the media policy YAML file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import MediaPolicy


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return its contents."""
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_media_policy(path: Optional[Path] = None) -> MediaPolicy:
    """
    Load the media policy.

    Args:
        path: YAML file with overrides. ``None`` returns the defaults.

    Raises:
        FileNotFoundError: if ``path`` is given but missing.
        pydantic.ValidationError: if the file does not match the schema.
    """
    if path is None:
        return MediaPolicy()

    policy_path = Path(path)
    if not policy_path.exists():
        raise FileNotFoundError(f"Media policy file not found: {policy_path}")

    data = load_yaml(policy_path)
    return MediaPolicy(**data)
