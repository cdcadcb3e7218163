"""Engine backends and start-up discovery."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import ServiceConfig
from ..errors import PdfError
from .base import EngineState, EngineStatus, PDFEngine
from .cli_engine import CliEngine
from .pypdf_engine import PypdfEngine

LOGGER = logging.getLogger("pdfops.engines")


def _probe_cli(config: ServiceConfig) -> EngineStatus:
    engine = CliEngine(config.cli_path, timeout=config.engine_timeout, merge_timeout=config.merge_timeout)
    version = engine.version()
    return EngineStatus(EngineState.AVAILABLE, engine, f"{version} (CLI)")


def _probe_library() -> EngineStatus:
    engine = PypdfEngine()
    return EngineStatus(EngineState.AVAILABLE, engine, f"{engine.version()} (library)")


def discover_engine(config: Optional[ServiceConfig] = None) -> EngineStatus:
    """Pick the first usable engine following ``config.discovery_order``."""

    config = config or ServiceConfig()
    failures = []
    for target in config.discovery_order:
        if target == "cli":
            try:
                status = _probe_cli(config)
            except PdfError as exc:
                LOGGER.debug("CLI engine %s unavailable: %s", config.cli_path, exc)
                failures.append(f"cli: {exc.message}")
                continue
        elif target == "library":
            if not config.library_enabled:
                failures.append("library: disabled")
                continue
            status = _probe_library()
        else:
            continue
        LOGGER.info("Using %s engine %s", status.engine_name, status.version)
        return status

    error = "; ".join(failures) or "no discovery targets configured"
    LOGGER.warning("No PDF engine available: %s", error)
    return EngineStatus(EngineState.UNAVAILABLE, None, "", error)


__all__ = [
    "PDFEngine",
    "EngineState",
    "EngineStatus",
    "CliEngine",
    "PypdfEngine",
    "discover_engine",
]
