"""
Inspect Store - Lists Chroma collections and their sizes.

Usage:
    python -m docsync.inspect_store
    python -m docsync.inspect_store --host localhost --port 8000
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import IndexerConfig
from .vectorstore import list_collections, make_chroma_client


logger = logging.getLogger(__name__)


def format_collections(collections: List[dict]) -> str:
    """Render collection descriptions as plain text."""
    if not collections:
        return "No collections."
    lines = []
    for info in collections:
        lines.append(f"Collection {info['name']}:")
        lines.append(f"  Description: {info['description']}")
        lines.append(f"  Number of items: {info['count']}")
        lines.append("")
    return "\n".join(lines).rstrip()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="List vector store collections")
    parser.add_argument("--path", help="Local Chroma directory (overrides CHROMA_PATH)")
    parser.add_argument("--host", help="Chroma server host (overrides CHROMA_HOST)")
    parser.add_argument("--port", type=int, help="Chroma server port")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")

    try:
        config = IndexerConfig.from_env()
        host = args.host or config.chroma_host
        path = Path(args.path) if args.path else config.chroma_path
        port = args.port or config.chroma_port

        client = make_chroma_client(path=path, host=host, port=port)
        collections = list_collections(client)
    except Exception as e:
        logger.error(f"Could not inspect vector store: {e}")
        return 1

    print(format_collections(collections))
    return 0


if __name__ == "__main__":
    sys.exit(main())
