"""
Retrieval of remote and local resources referenced by chapters
"""

import logging
import tempfile
from pathlib import Path
from typing import Optional

import requests

from .paths import is_remote


class ResourceFetcher:
    """Reads resources from URLs (requests) or from the local file system"""

    def __init__(self, timeout: float = 60.0, session: Optional[requests.Session] = None):
        self.logger = logging.getLogger(__name__)
        self.timeout = timeout
        self.session = session or requests.Session()

    def exists(self, path) -> bool:
        return Path(path).is_file()

    def get(self, source: str) -> Optional[bytes]:
        """Return the resource bytes, or None when it cannot be read"""
        if is_remote(source):
            try:
                response = self.session.get(source, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                self.logger.warning(f"Failed to fetch {source}: {e}")
                return None
            self.logger.debug(f"Fetched {source} ({len(response.content)} bytes)")
            return response.content

        path = Path(source)
        if not path.is_file():
            self.logger.debug(f"Local resource not found: {source}")
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            self.logger.warning(f"Failed to read {source}: {e}")
            return None

    def download(self, url: str) -> Optional[Path]:
        """Stream a large remote file into a temporary file; caller removes it"""
        try:
            response = self.session.get(url, stream=True, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.warning(f"Failed to download {url}: {e}")
            return None

        suffix = Path(url.split('?', 1)[0]).suffix
        handle = tempfile.NamedTemporaryFile(prefix='quire_', suffix=suffix, delete=False)
        try:
            with handle:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        handle.write(chunk)
        except (OSError, requests.RequestException) as e:
            self.logger.warning(f"Failed to download {url}: {e}")
            Path(handle.name).unlink(missing_ok=True)
            return None
        finally:
            response.close()

        self.logger.debug(f"Downloaded {url} to {handle.name}")
        return Path(handle.name)

