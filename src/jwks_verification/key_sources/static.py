"""Key source backed by a fixed JWKS document."""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from ..models import KeySet
from ._jwks import parse_key_set


class StaticKeySource:
    """Serves a JWKS document held in memory.

    Useful for air-gapped deployments with pinned keys, and for tests. Each
    fetch re-validates the document, so a bad document fails the same way a
    bad remote response would.
    """

    def __init__(self, document: Mapping[str, Any]) -> None:
        self._document = copy.deepcopy(dict(document))

    @classmethod
    def from_file(cls, path: str | Path) -> StaticKeySource:
        with open(path, encoding="utf-8") as fh:
            return cls(json.load(fh))

    def fetch_key_set(self) -> KeySet:
        return parse_key_set(self._document, fetched_at=time.time())
