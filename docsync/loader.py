"""
Loader - Turns local text files into Documents.

Walks the configured roots with os.scandir, skipping hidden and build
directories, and reads every file with a known text extension. Each
Document carries its path as "source" so chunks can be grouped later.
"""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import AsyncGenerator, List, Optional

from .config import get_config, IndexerConfig
from .errors import handle_error, ErrorAction
from .models import Document


logger = logging.getLogger(__name__)


class Loader:
    """
    Filesystem document source.

    Traversal is sequential; file reads go through a small thread pool.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.hasher_concurrency,
                thread_name_prefix="loader"
            )
        return self._executor

    async def load(self, roots: List[Path] | None = None) -> List[Document]:
        """
        Load every text file under the roots.

        Args:
            roots: Directories to load (default: config.roots)

        Returns:
            Documents sorted by source path
        """
        roots = roots or self.config.roots
        paths = [path async for path in self.iter_paths(roots)]

        loop = asyncio.get_running_loop()
        executor = self._get_executor()
        results = await asyncio.gather(
            *(loop.run_in_executor(executor, self._read_document, path) for path in paths)
        )

        documents = [doc for doc in results if doc is not None]
        documents.sort(key=lambda d: d.metadata["source"])
        logger.info(f"Loaded {len(documents)} documents from {len(roots)} roots")
        return documents

    async def iter_paths(self, roots: List[Path]) -> AsyncGenerator[Path, None]:
        """Yield candidate files under each root."""
        for root in roots:
            if not root.exists():
                logger.warning(f"Root directory not found: {root}")
                continue
            if root.is_file():
                if self._is_text_file(root.name):
                    yield root
                continue
            async for path in self._scan_directory(root):
                yield path

    async def _scan_directory(self, directory: Path) -> AsyncGenerator[Path, None]:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            handle_error(e, directory, "scan_directory")
            return

        subdirs: List[Path] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if not self._should_skip_dir(entry.name):
                        subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False) and self._is_text_file(entry.name):
                    yield Path(entry.path)
            except OSError as e:
                handle_error(e, Path(entry.path), "scan_entry")

        for subdir in subdirs:
            async for path in self._scan_directory(subdir):
                yield path

    def _read_document(self, path: Path) -> Optional[Document]:
        """Read one file (runs in thread pool). Unreadable files are skipped."""
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            if handle_error(e, path, "read") is ErrorAction.SKIP:
                return None
            raise

        if not text.strip():
            return None

        return Document(
            page_content=text,
            metadata={"source": str(path), "title": path.stem},
        )

    def _should_skip_dir(self, name: str) -> bool:
        return name.startswith(".") or name in self.config.skip_dirs

    def _is_text_file(self, name: str) -> bool:
        if name.startswith("."):
            return False
        return Path(name).suffix.lower() in self.config.text_extensions

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


async def load_documents(
    roots: List[Path] | None = None,
    config: IndexerConfig | None = None,
) -> List[Document]:
    """
    Convenience function to load documents.

    Usage:
        docs = await load_documents([Path("docs")])
    """
    loader = Loader(config)
    try:
        return await loader.load(roots)
    finally:
        loader.close()
