import csv
import logging
from collections import Counter
from pathlib import Path
from typing import Dict, List, Union

from . import config
from .models import IndexingResult, IndexingStep


class IndexingSummary:
    """
    Aggregates the steps of one or more indexing sequences into counts per
    outcome, plus a bounded sample of the paths involved so a human can see
    exactly which files were lost, found or failed.
    """

    def __init__(self, max_paths: int = config.SUMMARY_MAX_PATHS):
        self.max_paths = max_paths
        self.counts: Counter = Counter()
        self.paths: Dict[IndexingResult, List[str]] = {result: [] for result in IndexingResult}
        self.errors: Dict[str, str] = {}
        self.truncated = False

    def add(self, step: IndexingStep):
        info = step.processed_info
        if info is None:
            return
        self.counts[info.result] += 1

        sample = self.paths[info.result]
        if len(sample) < self.max_paths:
            sample.append(info.path)
        else:
            self.truncated = True

        if info.result == IndexingResult.ERROR:
            if len(self.errors) < self.max_paths:
                self.errors[info.path] = info.error or ""
            else:
                self.truncated = True

    @property
    def error_count(self) -> int:
        return self.counts[IndexingResult.ERROR]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def lines(self) -> List[str]:
        out = [f"Processed {self.total} files:"]
        for result in IndexingResult:
            if self.counts[result]:
                out.append(f"  {result.value:<36} {self.counts[result]}")
        for path, message in self.errors.items():
            out.append(f"  ! {path}: {message}")
        if self.truncated:
            out.append(f"  (path lists truncated to {self.max_paths} entries)")
        return out

    def log(self):
        for line in self.lines():
            logging.info(line)

    def write_csv(self, output_csv: Union[str, Path]):
        """One row per recorded path: outcome, path, error message."""
        headers = ["Result", "Path", "Notes"]
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(headers)
            for result in IndexingResult:
                for path in self.paths[result]:
                    note = self.errors.get(path, "") if result == IndexingResult.ERROR else ""
                    writer.writerow([result.value, path, note])
        logging.info(f"Report written: {output_csv}")
