"""
In-memory zip archive writer for EPUB packages
"""

import io
import logging
import zipfile
from pathlib import Path
from typing import BinaryIO, List, Union

from .constants import EPUB_MIMETYPE
from .errors import StateError


class ZipArchive:
    """Zip container whose first entry is the stored `mimetype` file"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, 'w', zipfile.ZIP_DEFLATED)
        self._closed = False
        self._names: List[str] = []
        self._zip.writestr('mimetype', EPUB_MIMETYPE, compress_type=zipfile.ZIP_STORED)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self, name: str):
        if self._closed:
            raise StateError(f"Archive already closed, cannot add {name}")

    def add_entry(self, name: str, data: Union[bytes, str], compress: bool = True):
        """Add a named entry; images are stored, everything else deflated"""
        self._ensure_open(name)
        if isinstance(data, str):
            data = data.encode('utf-8')
        compress_type = zipfile.ZIP_DEFLATED if compress else zipfile.ZIP_STORED
        self._zip.writestr(name, data, compress_type=compress_type)
        self.logger.debug(f"Archived {name} ({len(data)} bytes)")

    def add_entry_from_file(self, path: Union[str, Path], name: str, compress: bool = True) -> bool:
        """Copy a file from disk into the archive"""
        self._ensure_open(name)
        path = Path(path)
        if not path.is_file():
            self.logger.warning(f"Cannot archive missing file: {path}")
            return False
        compress_type = zipfile.ZIP_DEFLATED if compress else zipfile.ZIP_STORED
        try:
            self._zip.write(path, name, compress_type=compress_type)
        except OSError as e:
            self.logger.warning(f"Failed to archive {path}: {e}")
            return False
        self.logger.debug(f"Archived {name} from {path}")
        return True

    def names(self) -> List[str]:
        if self._closed:
            return list(self._names)
        return self._zip.namelist()

    def close(self):
        if self._closed:
            return
        self._names = self._zip.namelist()
        self._zip.close()
        self._closed = True

    def get_bytes(self) -> bytes:
        self.close()
        return self._buffer.getvalue()

    def get_size(self) -> int:
        return len(self.get_bytes())

    def stream_to(self, sink: BinaryIO, filename: str, mime_type: str = EPUB_MIMETYPE) -> bool:
        """Write the finished archive to a binary sink such as a response body"""
        data = self.get_bytes()
        try:
            sink.write(data)
            if hasattr(sink, 'flush'):
                sink.flush()
        except OSError as e:
            self.logger.warning(f"Failed to stream {filename}: {e}")
            return False
        self.logger.info(f"Streamed {filename} ({mime_type}, {len(data)} bytes)")
        return True
