#!/usr/bin/env python3
"""
Print the route decision for a task without executing it.

Usage:
    route_preview.py <task> [priority] [preferred_backend]

Output is a JSON object with the chosen backend, model, reason, estimates
and fallback chain. Exits 1 with an error payload when no route exists.
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ai_router.capability import CapabilityDetector  # noqa: E402
from ai_router.config import RouterConfig  # noqa: E402
from ai_router.smart_router import SmartRouter  # noqa: E402
from ai_router.types import Backend, Priority, RouterError, RouterOptions, TaskType  # noqa: E402


def preview(task: str, priority: str = "quality", preferred: str | None = None) -> dict:
    config = RouterConfig.load()
    router = SmartRouter(detector=CapabilityDetector(config.local))
    options = RouterOptions(
        priority=Priority(priority),
        preferred_backend=Backend(preferred) if preferred else None,
    )
    decision = asyncio.run(router.select(TaskType(task), options))
    return {
        "backend": decision.backend.value,
        "model": decision.model,
        "reason": decision.reason,
        "estimated_cost": decision.estimated_cost,
        "estimated_latency": decision.estimated_latency,
        "fallbacks": [b.value for b in decision.fallbacks],
    }


def main(argv: list[str]) -> int:
    if not argv:
        print(__doc__, file=sys.stderr)
        return 2

    try:
        result = preview(*argv[:3])
    except ValueError as e:
        print(json.dumps({"error": "invalid_argument", "message": str(e)}))
        return 2
    except RouterError as e:
        print(json.dumps(e.to_dict()))
        return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
