import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from dispatch_engine.clock import FixedClock
from dispatch_engine.persistence.filesystem import FileStorage

NOON = datetime(2024, 3, 12, 12, 0, tzinfo=timezone.utc)


def _storage(tmp_path: Path) -> FileStorage:
    return FileStorage(root=tmp_path, clock=FixedClock(NOON))


def test_write_run_creates_a_timestamped_directory_under_outputs(tmp_path: Path) -> None:
    run_dir = _storage(tmp_path).write_run("route", {"total_distance_km": 4.2}, {"route": "sequence\n1\n"})

    assert run_dir.is_dir()
    assert run_dir.parent == tmp_path.resolve() / "outputs"
    assert run_dir.name == "route_20240312T120000000000Z"


def test_run_directory_names_carry_the_run_id(tmp_path: Path) -> None:
    run_dir = _storage(tmp_path).write_run(
        "route", {}, {}, run_id="0f8c2d7e-1111-2222-3333-444455556666"
    )

    assert run_dir.name == "route_20240312T120000000000Z_0f8c2d7e"


def test_write_run_stores_summary_and_one_csv_per_table(tmp_path: Path) -> None:
    run_dir = _storage(tmp_path).write_run(
        "batch",
        {"total": 2, "created_at": NOON},
        {"assignments": "delivery_id,partner_id\nD1,P1\n", "unassigned": "delivery_id\n"},
    )

    summary = json.loads((run_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary == {"total": 2, "created_at": "2024-03-12 12:00:00+00:00"}
    assert (run_dir / "assignments.csv").read_text(encoding="utf-8") == "delivery_id,partner_id\nD1,P1\n"
    assert (run_dir / "unassigned.csv").read_text(encoding="utf-8") == "delivery_id\n"
    assert sorted(path.name for path in run_dir.iterdir()) == ["assignments.csv", "summary.json", "unassigned.csv"]


def test_two_runs_at_the_same_instant_need_distinct_run_ids(tmp_path: Path) -> None:
    storage = _storage(tmp_path)
    first = storage.write_run("route", {}, {}, run_id="aaaaaaaa-1")
    second = storage.write_run("route", {}, {}, run_id="bbbbbbbb-2")

    assert first != second
    with pytest.raises(FileExistsError):
        storage.write_run("route", {}, {}, run_id="aaaaaaaa-3")
