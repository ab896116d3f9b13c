from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple, Union

from detector.class_pool import ClassPool
from detector.context import ScanConfig
from detector.logging import Logger
from detector.walker import ArchiveWalker


def load_class_pool(
    path: Union[str, Path],
    config: ScanConfig,
    logger: Logger,
    walker: Optional[ArchiveWalker] = None,
) -> Tuple[ClassPool, ArchiveWalker]:
    pool = ClassPool()
    walker = walker or ArchiveWalker(config, logger)
    for definition, provenance in walker.walk(path):
        if pool.accept(definition, provenance):
            logger.debug(f"class added name={definition.name} location={provenance}")
        else:
            logger.debug(f"class merged name={definition.name} location={provenance}")
    return pool, walker
