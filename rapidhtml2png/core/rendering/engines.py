"""
Engine Selection
================

Detects which rendering backends work in this process and picks the best one.

Detection probes each backend once per selector lifetime. The capability table
is the only mutable state shared between requests; it is written once under a
lock and read without one afterwards.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
import asyncio

from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.core.errors import NoEngineAvailable
from rapidhtml2png.core.rendering.base import BaseRenderer
from rapidhtml2png.core.rendering.pillow_renderer import PillowRenderer
from rapidhtml2png.core.rendering.playwright_renderer import PlaywrightRenderer
from rapidhtml2png.models.schemas import EngineCapability

logger = get_logger(__name__)

ENGINE_PREFERENCE = ("playwright", "pillow")


def select_engine(
    capabilities: Mapping[str, EngineCapability], preference: Sequence[str] = ENGINE_PREFERENCE
) -> EngineCapability:
    """
    Pick the first available engine in preference order.

    Args:
        capabilities: Probe results keyed by engine name
        preference: Engine names, best first

    Returns:
        Capability of the selected engine

    Raises:
        NoEngineAvailable: If no preferred engine is available
    """
    for name in preference:
        capability = capabilities.get(name)
        if capability is not None and capability.available:
            return capability

    reasons = "; ".join(
        f"{name}: {capabilities[name].reason or 'unavailable'}"
        for name in preference
        if name in capabilities
    )
    raise NoEngineAvailable(f"No rendering engine available ({reasons or 'none registered'})")


class EngineSelector:
    """Owns the rendering backends and their detected capabilities."""

    def __init__(self, renderers: Iterable[BaseRenderer], preference: Optional[Sequence[str]] = None):
        self.renderers: Dict[str, BaseRenderer] = {r.name: r for r in renderers}
        self.preference = tuple(preference or self._default_preference())
        self._capabilities: Optional[Dict[str, EngineCapability]] = None
        self._lock = asyncio.Lock()
        self.logger: Any = logger.bind(component="engine_selector")

    def _default_preference(self) -> List[str]:
        known = [name for name in ENGINE_PREFERENCE if name in self.renderers]
        return known + [name for name in self.renderers if name not in known]

    async def detect(self) -> Dict[str, EngineCapability]:
        """
        Probe every backend once and cache the results.

        Never raises: a failing probe is recorded as unavailable with the
        exception text as the reason.
        """
        if self._capabilities is not None:
            return self._capabilities

        async with self._lock:
            if self._capabilities is not None:
                return self._capabilities

            capabilities: Dict[str, EngineCapability] = {}
            for name in self.preference:
                renderer = self.renderers[name]
                try:
                    capability = await renderer.probe()
                except Exception as e:
                    capability = renderer.capability(False, None, f"probe failed: {e}")
                capabilities[name] = capability

            self._capabilities = capabilities
            self._log_selection(capabilities)
            return capabilities

    def _log_selection(self, capabilities: Dict[str, EngineCapability]) -> None:
        try:
            selected = select_engine(capabilities, self.preference)
        except NoEngineAvailable as e:
            self.logger.error("No rendering engine available", reason=str(e))
            return

        skipped = {
            name: cap.reason
            for name, cap in capabilities.items()
            if not cap.available and self.preference.index(name) < self.preference.index(selected.name)
        }
        self.logger.info(
            "Rendering engine selected",
            engine=selected.name,
            version=selected.version,
            fidelity=selected.fidelity.value,
            reason="first available in preference order",
            skipped=skipped,
            available=[name for name, cap in capabilities.items() if cap.available],
        )

    async def select(self) -> EngineCapability:
        """Get the preferred available engine, raising NoEngineAvailable if none."""
        return select_engine(await self.detect(), self.preference)

    async def candidates(self) -> List[BaseRenderer]:
        """Get the available renderers, best first."""
        capabilities = await self.detect()
        return [
            self.renderers[name]
            for name in self.preference
            if capabilities[name].available
        ]

    async def close(self) -> None:
        for renderer in self.renderers.values():
            try:
                await renderer.close()
            except Exception as e:
                self.logger.warning("Failed to close renderer", engine=renderer.name, error=str(e))


def create_default_renderers() -> List[BaseRenderer]:
    """Create the built-in renderers in preference order."""
    return [PlaywrightRenderer(), PillowRenderer()]
