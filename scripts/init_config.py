#!/usr/bin/env python3
"""
Write the default router configuration if none exists.

Creates ~/.ai-router/config.json and the interaction log directory.
"""

import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ai_router.config import DEFAULT_CONFIG_PATH, RouterConfig  # noqa: E402


def init_config(path: Path = DEFAULT_CONFIG_PATH) -> RouterConfig:
    """Create the config file with defaults, or load the existing one."""
    if path.exists():
        print(f"Config already exists at {path}", file=sys.stderr)
        config = RouterConfig.load(path)
    else:
        config = RouterConfig()
        config.save(path)
        print(f"Created router config at {path}", file=sys.stderr)

    log_dir = Path(config.orchestrator.interaction_log_path).expanduser().parent
    log_dir.mkdir(parents=True, exist_ok=True)
    return config


if __name__ == "__main__":
    target = Path(sys.argv[1]).expanduser() if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH
    init_config(target)
