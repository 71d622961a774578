"""Example: Minimal downstream reader for the bridge's named pipe.

Stands in for the analysis process. Creates the FIFO if needed, waits
for the bridge to attach, and logs every trade record it receives.

Usage:
    python -m examples.example_pipe_reader
    python -m examples.example_pipe_reader --pipe-path /tmp/pipe_1

Start the reader first, then the bridge in another terminal:
    python -m scripts.run_bridge

Press Ctrl+C to stop.

Design notes:
    - Opening a FIFO for reading blocks until a writer attaches, and
      reading returns EOF when the writer closes. The reader then
      reopens the pipe and waits for the next bridge run.
    - Malformed records are logged and skipped, never fatal.
"""

import argparse
import logging
import os
import stat

from infra.sink import parse_trade_record

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def ensure_fifo(path: str) -> None:
    """Create a FIFO at ``path`` unless one already exists.

    Raises:
        RuntimeError: If ``path`` exists and is not a FIFO.
    """
    if not os.path.exists(path):
        os.mkfifo(path)
        logger.info("Created FIFO %s", path)
        return
    if not stat.S_ISFIFO(os.stat(path).st_mode):
        raise RuntimeError(f"{path} exists and is not a FIFO")


def main() -> None:
    """Read and log trade records until interrupted."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Log trade records written by the bridge",
    )
    parser.add_argument(
        "--pipe-path",
        type=str,
        default="/tmp/pipe_1",
        help="Named pipe to read from (default: /tmp/pipe_1)",
    )
    args: argparse.Namespace = parser.parse_args()

    ensure_fifo(args.pipe_path)
    total_records: int = 0
    malformed: int = 0

    try:
        while True:
            logger.info("Waiting for writer on %s...", args.pipe_path)
            with open(args.pipe_path, encoding="utf-8") as pipe:
                logger.info("Writer attached")
                for line in pipe:
                    try:
                        title, name, outcome, outcome_index, side, size, price, time_of_day = (
                            parse_trade_record(line)[:8]
                        )
                        total_records += 1
                        logger.info(
                            "[%s] %s %s %s @ %.4f (outcome=%s #%d, by %s)",
                            time_of_day,
                            side,
                            size,
                            title,
                            float(price),
                            outcome,
                            int(outcome_index),
                            name,
                        )
                    except ValueError as exc:
                        malformed += 1
                        logger.warning("Skipping malformed record: %s", exc)
            logger.info("Writer detached")
    except KeyboardInterrupt:
        logger.info("Shutting down (received KeyboardInterrupt)...")
    finally:
        logger.info("Records: %d, malformed: %d", total_records, malformed)


if __name__ == "__main__":
    main()
