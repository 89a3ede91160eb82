"""
Registry of imported resources, keyed by their path inside the book
"""

import logging
from typing import Dict, Iterator, Optional, Tuple


class ResourceRegistry:
    """Remembers where each imported resource came from so it is imported once"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._origins: Dict[str, str] = {}

    def register(self, internal_path: str, origin: str) -> bool:
        """Record a resource; False when the path was already imported"""
        if internal_path in self._origins:
            self.logger.debug(f"Reusing {internal_path} (from {self._origins[internal_path]})")
            return False
        self._origins[internal_path] = origin
        self.logger.debug(f"Registered {internal_path} from {origin}")
        return True

    def contains(self, internal_path: str) -> bool:
        return internal_path in self._origins

    def origin_of(self, internal_path: str) -> Optional[str]:
        return self._origins.get(internal_path)

    def path_for_origin(self, origin: str) -> Optional[str]:
        """Internal path a source was already imported under"""
        for internal_path, known_origin in self._origins.items():
            if known_origin == origin:
                return internal_path
        return None

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._origins.items())

    def __contains__(self, internal_path: str) -> bool:
        return self.contains(internal_path)

    def __len__(self) -> int:
        return len(self._origins)
