"""Managed regions: spans of foreign files that kaede owns exclusively.

Every patcher describes its region with the same four operations and lets
``patch_file`` drive the read / back up / write / re-read / verify cycle.
A region is synced with ``env=None`` to remove it (GPU choice Default) or
with a list of ``KEY=VALUE`` strings to create or update it.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .errors import ParseFailure
from .utils import read_text_exact, write_backup_if_missing, write_text_atomic

log = logging.getLogger(__name__)

class ManagedRegion(ABC):

    def load(self, raw: str, path: Path) -> Any:
        return raw

    def dump(self, doc: Any) -> str:
        return doc

    @abstractmethod
    def locate(self, doc: Any) -> Any:
        """Return the region's anchor in `doc`, or None when it does not apply to this file."""

    @abstractmethod
    def upsert(self, doc: Any, env: List[str]) -> Tuple[Any, bool]:
        """Create or resynchronize the region; returns (doc, changed)."""

    @abstractmethod
    def remove(self, doc: Any) -> Tuple[Any, bool]:
        """Drop the region entirely; returns (doc, changed)."""

    @abstractmethod
    def verify(self, doc: Any, env: Optional[List[str]]) -> bool:
        """True when `doc` holds exactly the desired state."""

    def sync(self, doc: Any, env: Optional[List[str]]) -> Tuple[Any, bool]:
        if env is None:
            return self.remove(doc)
        return self.upsert(doc, env)

@dataclass
class PatchOutcome:
    path: Path
    matched: bool
    changed: bool
    validated: bool

def patch_file(path: Path, region: ManagedRegion, env: Optional[List[str]],
               raw: Optional[str] = None) -> PatchOutcome:
    try:
        return _patch(path, region, env, raw)
    except ParseFailure as e:
        if e.path is None:
            e.path = Path(path)
        raise

def _patch(path: Path, region: ManagedRegion, env: Optional[List[str]],
           raw: Optional[str]) -> PatchOutcome:
    if raw is None:
        raw = read_text_exact(path)
    doc = region.load(raw, path)
    matched = region.locate(doc) is not None

    new_doc, changed = region.sync(doc, env)
    if changed:
        write_backup_if_missing(path, raw)
        write_text_atomic(path, region.dump(new_doc))
        log.info("updated managed region in %s", path)
        current = region.load(read_text_exact(path), path)
    else:
        log.debug("%s already in desired state", path)
        current = new_doc

    if region.locate(current) is not None:
        matched = True
    validated = matched and region.verify(current, env)
    if matched and not validated:
        log.warning("managed region in %s failed validation", path)
    return PatchOutcome(path=path, matched=matched, changed=changed, validated=validated)
