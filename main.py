from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

# Ensure the src/ directory is on sys.path so we can import municipal_intel
ROOT_DIR = Path(__file__).resolve().parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from municipal_intel.config import LOG_LEVEL  # type: ignore  # noqa: E402
from municipal_intel.conversation.orchestrator import ResponseOrchestrator  # type: ignore  # noqa: E402
from municipal_intel.core.data_loader import DataLoaderError, RecordSource  # type: ignore  # noqa: E402
from municipal_intel.llm.client import AnthropicProvider  # type: ignore  # noqa: E402

logger = logging.getLogger("municipal_intel.main")


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask a question about the municipal citizen survey.")
    parser.add_argument("query", nargs="*", help="Question text (reads one query per line from stdin if omitted)")
    parser.add_argument("--data", type=Path, help="Local JSON export of citizen records")
    parser.add_argument("--stats", action="store_true", help="Print the statistics snapshot and exit")
    parser.add_argument("--text", action="store_true", help="Print only the response text")
    return parser.parse_args(argv)


def run(argv=None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    try:
        source = RecordSource.from_file(args.data) if args.data else RecordSource.from_config()
    except DataLoaderError as exc:
        logger.error("Could not load citizen records: %s", exc)
        return 1

    orchestrator = ResponseOrchestrator(source, provider=AnthropicProvider())

    if args.stats:
        print(json.dumps(orchestrator.statistics().to_dict(), ensure_ascii=False, indent=2))
        return 0

    queries = [" ".join(args.query)] if args.query else [line.strip() for line in sys.stdin if line.strip()]
    ok = True
    for query in queries:
        result = orchestrator.process(query)
        ok = ok and result.success
        if args.text:
            print(result.response)
        else:
            print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    return 0 if ok else 2


if __name__ == "__main__":
    sys.exit(run())
