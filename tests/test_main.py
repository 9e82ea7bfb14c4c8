import asyncio
import csv
import pytest
from darkgallery.core import Gallery
from darkgallery.exceptions import DatabaseError
from darkgallery.main import main, parse_args, run_indexing
from darkgallery.reporting import IndexingSummary


def test_parse_args_defaults(tmp_path):
    args = parse_args([str(tmp_path)])
    assert args.root == tmp_path
    assert not args.compare_hash
    assert args.batch_size == 100
    assert args.fetch_count == 1000


def test_mode_flags_are_exclusive(tmp_path):
    with pytest.raises(SystemExit):
        parse_args([str(tmp_path), "--existing-only", "--new-only"])


def test_check_reports_status_and_exit_code(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path), "--check"])
    assert exc.value.code == 0
    assert "is_gallery" in capsys.readouterr().out

    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "missing"), "--check"])
    assert exc.value.code == 1


def test_full_run_indexes_and_writes_report(gallery_root, make_image, tmp_path):
    make_image(gallery_root / "a.png")
    make_image(gallery_root / "trip" / "b.png", color=(0, 0, 255))
    report = tmp_path / "report.csv"

    main([str(gallery_root), "--batch-size", "1", "--title", "Trip", "--report-csv", str(report)])

    with Gallery(gallery_root) as gallery:
        assert gallery.items.count() == 2
        assert gallery.get_config('title') == "Trip"

    with open(report, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert {r["Path"] for r in rows} == {"a.png", "trip/b.png"}
    assert {r["Result"] for r in rows} == {"item-added"}

    # Second run: the existing pass sees both files unchanged
    report_again = tmp_path / "again.csv"
    main([str(gallery_root), "--report-csv", str(report_again)])
    with open(report_again, newline="", encoding="utf-8") as f:
        assert {r["Result"] for r in csv.DictReader(f)} == {"no-big-change"}


def test_failed_pass_cancels_the_following_ones():
    def failing_pass():
        raise DatabaseError("database is locked")

    def never_called():
        raise AssertionError("should have been canceled")

    summary = IndexingSummary()
    failures = asyncio.run(run_indexing(
        [("Existing items", failing_pass), ("New files", never_called)], summary))

    assert failures == ["Existing items"]
    assert summary.total == 0
