"""
Configuration hashing utilities.

Used to stamp sorting results with the parameters that produced them.
"""

import hashlib
import json
from typing import Any, Dict


def hash_config(config: Dict[str, Any], prefix: str = "sha256") -> str:
    """
    Produce deterministic hash of a configuration dictionary.

    Args:
        config: Configuration dictionary to hash
        prefix: Hash prefix (default: "sha256")

    Returns:
        Hash string in format "prefix:hash_value"

    Example:
        >>> hash_config({"bisections": 6, "min_spikes": 10})
        'sha256:...'
    """
    # Sort keys for determinism
    serialized = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    hash_value = hashlib.sha256(serialized.encode()).hexdigest()[:16]
    return f"{prefix}:{hash_value}"
