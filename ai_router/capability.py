"""
Local acceleration capability detection.

Answers one question: may (and can) this process run accelerated
in-process inference right now? The answer is never cached here since
policy and hardware availability can change while the process runs.
"""

from __future__ import annotations

import logging
import os

from .config import LocalInferenceConfig

logger = logging.getLogger(__name__)


class CapabilityDetector:
    """Probe for permitted, working hardware acceleration."""

    def __init__(self, config: LocalInferenceConfig | None = None):
        self.config = config or LocalInferenceConfig()

    def policy_allows_local(self) -> bool:
        """Check the execution environment's security policy."""
        if not self.config.enabled:
            return False
        flag = os.environ.get(self.config.disable_env, "").strip().lower()
        return flag not in ("1", "true", "yes", "on")

    async def has_local_acceleration(self) -> bool:
        """True only when policy allows local inference and a device handle is acquired."""
        if not self.policy_allows_local():
            return False

        try:
            return self.preferred_device() is not None
        except Exception as e:
            logger.debug(f"Acceleration probe failed: {e}")
            return False

    def preferred_device(self) -> str | None:
        """Accelerator device name ("cuda" or "mps"), or None."""
        try:
            import torch
        except ImportError:
            logger.debug("torch not installed, local acceleration unavailable")
            return None

        if torch.cuda.is_available():
            torch.cuda.current_device()  # Fails if the driver refuses a handle
            return "cuda"
        mps = getattr(torch.backends, "mps", None)
        if mps is not None and mps.is_available():
            return "mps"
        return None


__all__ = ["CapabilityDetector"]
