# services/bundle_service.py
"""
Bundle Processing

Validates uploaded bundles and turns a ZIP archive into the flat file list
the deployment provider accepts.
"""

import asyncio
import base64
import hashlib
import io
import posixpath
import zipfile
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from core.config import Settings, settings
from core.errors import BundleExtractionError
from core.logger import logger


DEFAULT_INDEX_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>ABBA App</title>
</head>
<body>
  <h1>ABBA App</h1>
  <p>This app was deployed with ABBA Hosting.</p>
</body>
</html>"""


@dataclass
class DeploymentFile:
    """A single file inside a deployment. Binary content is base64 text."""
    path: str
    content: str
    is_binary: bool = False

    def to_provider_payload(self) -> Dict[str, Any]:
        payload = {"file": self.path, "data": self.content}
        if self.is_binary:
            payload["encoding"] = "base64"
        return payload


@dataclass
class SizeValidation:
    valid: bool
    error: Optional[str] = None


@dataclass
class ExtractedBundle:
    files: List[DeploymentFile] = field(default_factory=list)
    content_hash: str = ""
    skipped: int = 0


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of the full byte sequence."""
    return hashlib.sha256(data).hexdigest()


class BundleProcessor:
    """
    Bundle validation and extraction with configurable limits.

    Defaults come from settings: 50 MiB per bundle, 10 MiB per file,
    10,000 files, 200 MiB uncompressed in total.
    """

    def __init__(self, config: Settings = settings):
        self.max_bundle_size = config.MAX_BUNDLE_SIZE
        self.max_file_size = config.MAX_FILE_SIZE
        self.max_files = config.MAX_FILES
        self.max_total_size = config.MAX_TOTAL_UNCOMPRESSED_SIZE
        self.binary_extensions = frozenset(ext.lower() for ext in config.BINARY_EXTENSIONS)
        self.junk_filenames = frozenset(config.JUNK_FILENAMES)

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def validate_bundle_size(self, size: int) -> SizeValidation:
        if size > self.max_bundle_size:
            return SizeValidation(
                valid=False,
                error=f"Bundle too large: {size} bytes (max {self.max_bundle_size} bytes)"
            )
        return SizeValidation(valid=True)

    def is_binary_file(self, path: str) -> bool:
        _root, ext = posixpath.splitext(path)
        return ext.lower() in self.binary_extensions

    def _should_skip(self, path: str) -> bool:
        basename = posixpath.basename(path)
        return basename.startswith(".") or basename in self.junk_filenames

    @staticmethod
    def _normalize_path(name: str) -> Optional[str]:
        """Relative POSIX path inside the bundle, or None if it escapes the root."""
        path = name.replace("\\", "/")
        if path.startswith("/") or (len(path) > 1 and path[1] == ":"):
            return None
        normalized = posixpath.normpath(path)
        if normalized in ("", ".") or normalized == ".." or normalized.startswith("../"):
            return None
        return normalized

    # ========================================================================
    # EXTRACTION
    # ========================================================================

    def extract_bundle(self, data: bytes) -> ExtractedBundle:
        """
        Extract files from a zip bundle.

        Skips directories, oversized entries, hidden files and OS junk, and
        stops collecting at the file-count limit. Any archive-level failure
        discards everything collected so far.

        Raises:
            BundleExtractionError: If the archive is malformed or expands past
                the total uncompressed size limit
        """
        result = ExtractedBundle(content_hash=compute_hash(data))

        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                limit_reached = False
                total_size = 0
                for info in archive.infolist():
                    if info.is_dir():
                        continue

                    path = self._normalize_path(info.filename)
                    if path is None:
                        logger.warning(f"[bundle] Skipping entry outside bundle root: {info.filename}")
                        result.skipped += 1
                        continue

                    if info.file_size > self.max_file_size:
                        logger.warning(f"[bundle] Skipping large file: {path} ({info.file_size} bytes)")
                        result.skipped += 1
                        continue

                    if self._should_skip(path):
                        result.skipped += 1
                        continue

                    if len(result.files) >= self.max_files:
                        if not limit_reached:
                            logger.warning(
                                f"[bundle] File limit reached ({self.max_files}), skipping remaining files"
                            )
                            limit_reached = True
                        result.skipped += 1
                        continue

                    total_size += info.file_size
                    if total_size > self.max_total_size:
                        logger.error(f"[bundle] Uncompressed size exceeds {self.max_total_size} bytes")
                        raise BundleExtractionError(
                            f"Failed to extract bundle: uncompressed size exceeds {self.max_total_size} bytes"
                        )

                    content = archive.read(info)
                    binary = self.is_binary_file(path)
                    result.files.append(DeploymentFile(
                        path=path,
                        content=(
                            base64.b64encode(content).decode("ascii")
                            if binary
                            else content.decode("utf-8", errors="replace")
                        ),
                        is_binary=binary,
                    ))
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError, ValueError) as e:
            logger.error(f"[bundle] Extraction error: {e}")
            raise BundleExtractionError(f"Failed to extract bundle: {e}") from e

        logger.info(f"[bundle] Extracted {len(result.files)} files ({result.skipped} skipped)")
        return result

    async def extract_bundle_async(self, data: bytes) -> ExtractedBundle:
        return await asyncio.to_thread(self.extract_bundle, data)

    @staticmethod
    def ensure_default_files(files: List[DeploymentFile]) -> List[DeploymentFile]:
        """Add a placeholder index.html when the bundle has none."""
        has_index = any(
            f.path == "index.html" or f.path.endswith("/index.html")
            for f in files
        )
        if not has_index:
            logger.info("[bundle] No index.html in bundle, adding placeholder")
            files.append(DeploymentFile(path="index.html", content=DEFAULT_INDEX_HTML))
        return files


def files_to_payload(files: Iterable[DeploymentFile]) -> List[Dict[str, Any]]:
    return [f.to_provider_payload() for f in files]
