import argparse
import asyncio
import dataclasses
import logging
import sys
import threading
from pathlib import Path
from typing import Callable, List, Tuple

from tqdm import tqdm

from . import config
from .core import Gallery, index_directory_path
from .exceptions import GalleryError
from .indexing.sequence import IndexingSequence
from .reporting import IndexingSummary
from .tasks import BackgroundTaskProcessor, QueuePriority, TaskEvent, TaskProcessorOptions

PassTask = Tuple[str, Callable[[], IndexingSequence]]


def setup_logging(index_dir: Path, verbose: bool):
    """Sets up logging to both console and a file in the gallery's index directory."""
    log_level = logging.DEBUG if verbose else logging.INFO

    index_dir.mkdir(parents=True, exist_ok=True)
    log_file = index_dir / config.LOG_FILENAME

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Dark Gallery: index a media directory into its catalogue")

    p.add_argument("root", type=Path, help="Gallery root directory")

    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--existing-only", action="store_true", help="Only re-check catalogued items")
    mode.add_argument("--new-only", action="store_true", help="Only index files not yet catalogued")

    p.add_argument("--compare-hash", action="store_true", help="Hash unchanged files too (slow, catches silent edits)")
    p.add_argument("--batch-size", type=int, default=config.BULK_COUNT, help="New records per bulk insert")
    p.add_argument("--fetch-count", type=int, default=config.FETCH_COUNT, help="Catalogued items read per query")
    p.add_argument("--reset", action="store_true", help="Delete the existing index before indexing")
    p.add_argument("--title", type=str, default=None, help="Set the gallery title")
    p.add_argument("--report-csv", type=Path, default=None, help="Write the per-file outcomes to this CSV")
    p.add_argument("--check", action="store_true", help="Print the gallery path status and exit")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return p.parse_args(argv)


def run_pass(name: str, sequence: IndexingSequence, summary: IndexingSummary, stop_requested: threading.Event):
    """Pulls a sequence to the end (or until asked to stop), feeding the summary."""
    with sequence, tqdm(desc=name, unit="file") as bar:
        for step in sequence:
            if step.processed_info is None:
                bar.reset(total=step.total_count)
            else:
                summary.add(step)
                bar.update(1)
            if stop_requested.is_set():
                logging.warning(f"{name}: stopped after {sequence.processed_count} of {sequence.total_count}")
                break


async def run_indexing(passes: List[PassTask], summary: IndexingSummary) -> List[str]:
    """
    Runs the passes one after another on a FIFO task processor, each in a
    worker thread. Returns the names of passes that failed.
    """
    if not passes:
        return []

    stop_requested = threading.Event()
    settled = asyncio.Event()
    failures: List[str] = []
    pending = len(passes)

    async def process(task: PassTask) -> str:
        name, make_sequence = task
        await asyncio.to_thread(run_pass, name, make_sequence(), summary, stop_requested)
        return name

    def settle():
        nonlocal pending
        pending -= 1
        if pending <= 0:
            settled.set()

    def on_done(task: PassTask, name: str):
        logging.info(f"{name}: done")
        settle()

    def on_error(task: PassTask, error: Exception):
        logging.error(f"{task[0]}: aborted: {error}")
        failures.append(task[0])
        settle()
        # Later passes rely on this one having completed
        processor.cancel_all_tasks()

    def on_canceled(task: PassTask):
        logging.warning(f"{task[0]}: skipped")
        settle()

    processor: BackgroundTaskProcessor[PassTask, str] = BackgroundTaskProcessor(
        process, TaskProcessorOptions(processing_priority=QueuePriority.FIFO))
    processor.add_listener(TaskEvent.DONE, on_done)
    processor.add_listener(TaskEvent.ERROR, on_error)
    processor.add_listener(TaskEvent.CANCELED, on_canceled)

    async with processor:
        for task in passes:
            processor.push_task(task)
        try:
            await settled.wait()
        finally:
            stop_requested.set()

    return failures


def print_path_info(root: Path) -> bool:
    info = Gallery.get_path_info(root)
    for field in dataclasses.fields(info):
        print(f"{field.name:<34} {getattr(info, field.name)}")
    return bool(info.exists and info.is_directory and info.directory_has_write_permission)


def main(argv=None):
    args = parse_args(argv)
    root = args.root.resolve()

    if args.check:
        sys.exit(0 if print_path_info(root) else 1)

    if args.reset and index_directory_path(root).exists():
        if not Gallery.reset(root):
            print(f"Could not reset the index of {root}", file=sys.stderr)
            sys.exit(1)

    info = Gallery.get_path_info(root)
    if not info.exists or not info.is_directory:
        print(f"Not a directory: {root}", file=sys.stderr)
        sys.exit(1)

    setup_logging(index_directory_path(root), args.verbose)

    logging.info("=== Dark Gallery Indexer Started ===")
    logging.info(f"Gallery: {root}")
    if info.is_descendant_of_gallery:
        logging.warning("This directory is inside another gallery; its files will be catalogued twice.")

    summary = IndexingSummary()
    try:
        with Gallery(root) as gallery:
            if args.title:
                gallery.set_config('title', args.title)

            passes: List[PassTask] = []
            if not args.new_only:
                passes.append(("Existing items", lambda: gallery.index_existing_items(
                    compare_hash=args.compare_hash, fetch_count=args.fetch_count)))
            if not args.existing_only:
                passes.append(("New files", lambda: gallery.index_new_files(batch_size=args.batch_size)))

            failures = asyncio.run(run_indexing(passes, summary))
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        summary.log()
        sys.exit(1)
    except GalleryError as e:
        logging.error(f"{e}")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error during indexing.")
        sys.exit(1)

    summary.log()
    if args.report_csv:
        summary.write_csv(args.report_csv)

    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
