"""Unit tests for the batch orchestrator.

Test categories:
- Partitioning (exact boundaries, properties)
- Task building
- Chunk worker (ordering, failure isolation)
- Aggregation (tally, worker crashes)
- Single-file upload
- Exit policy
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from kodo_cli.batch import (
    BatchResult,
    ChunkWorker,
    UploadOutcome,
    UploadTask,
    build_tasks,
    exit_code_for,
    run_batch,
    split_into_chunks,
    upload_single_file,
)
from kodo_cli.errors import UnreadableSourceError

# =============================================================================
# Partitioning
# =============================================================================


class TestSplitIntoChunks:
    """Tests for split_into_chunks."""

    @pytest.mark.unit
    def test_65_items_30_workers_exact_boundaries(self) -> None:
        """ceil(65 / 30) = 3 items per chunk; 21 full chunks and a last one of 2."""
        items = list(range(65))

        chunks = split_into_chunks(items, 30)

        assert len(chunks) == 22
        assert [len(c) for c in chunks] == [3] * 21 + [2]
        for i, chunk in enumerate(chunks[:21]):
            assert chunk == [3 * i, 3 * i + 1, 3 * i + 2]
        assert chunks[-1] == [63, 64]

    @pytest.mark.unit
    def test_fewer_items_than_workers_gives_singletons(self) -> None:
        chunks = split_into_chunks(["a", "b", "c"], 30)

        assert chunks == [["a"], ["b"], ["c"]]

    @pytest.mark.unit
    def test_exact_multiple(self) -> None:
        chunks = split_into_chunks(list(range(60)), 30)

        assert len(chunks) == 30
        assert all(len(c) == 2 for c in chunks)

    @pytest.mark.unit
    def test_single_worker_takes_everything(self) -> None:
        assert split_into_chunks([1, 2, 3], 1) == [[1, 2, 3]]

    @pytest.mark.unit
    def test_empty_input(self) -> None:
        assert split_into_chunks([], 30) == []

    @pytest.mark.unit
    def test_invalid_bound_raises(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            split_into_chunks([1], 0)

    @pytest.mark.unit
    @given(items=st.lists(st.integers(), max_size=300), max_chunks=st.integers(1, 64))
    def test_concatenation_reproduces_input(self, items: list[int], max_chunks: int) -> None:
        chunks = split_into_chunks(items, max_chunks)

        assert [x for chunk in chunks for x in chunk] == items

    @pytest.mark.unit
    @given(items=st.lists(st.integers(), min_size=1, max_size=300), max_chunks=st.integers(1, 64))
    def test_chunk_count_bounds(self, items: list[int], max_chunks: int) -> None:
        chunks = split_into_chunks(items, max_chunks)

        assert 1 <= len(chunks) <= min(len(items), max_chunks)
        assert all(chunks), "chunks must be non-empty"

    @pytest.mark.unit
    @given(items=st.lists(st.integers(), min_size=1, max_size=300), max_chunks=st.integers(1, 64))
    def test_chunk_sizes_follow_ceiling_rule(self, items: list[int], max_chunks: int) -> None:
        size = -(-len(items) // max_chunks)

        chunks = split_into_chunks(items, max_chunks)

        assert all(len(c) == size for c in chunks[:-1])
        assert 1 <= len(chunks[-1]) <= size


# =============================================================================
# Task Building
# =============================================================================


class TestBuildTasks:
    """Tests for build_tasks."""

    @pytest.mark.unit
    def test_keys_without_prefix(self) -> None:
        root = Path("photos")
        files = [Path("photos/a.jpg"), Path("photos/sub/b.jpg")]

        tasks = build_tasks(files, root)

        assert [t.remote_key for t in tasks] == [
            "uploads/photos/a.jpg",
            "uploads/photos/sub/b.jpg",
        ]

    @pytest.mark.unit
    def test_keys_with_prefix(self) -> None:
        root = Path("Photos")

        tasks = build_tasks([Path("Photos/A.jpg")], root, "/Backups/")

        assert tasks == [UploadTask(Path("Photos/A.jpg"), "backups/photos/a.jpg")]


# =============================================================================
# Worker
# =============================================================================


def _tasks_for(root: Path) -> list[UploadTask]:
    return [UploadTask(p, f"k/{p.name}") for p in sorted(root.rglob("*")) if p.is_file()]


class TestChunkWorker:
    """Tests for ChunkWorker."""

    @pytest.mark.unit
    def test_uploads_in_order_with_content_and_size(
        self, photo_tree: Path, fake_client: Any
    ) -> None:
        tasks = _tasks_for(photo_tree)

        tally = ChunkWorker(fake_client, tasks).run()

        assert tally.success_count == 2
        assert tally.failure_count == 0
        assert fake_client.keys == ["k/a.jpg", "k/b.jpg"]
        assert fake_client.calls[0]["data"] == b"a" * 100
        assert fake_client.calls[1]["size"] == 200

    @pytest.mark.unit
    def test_passes_part_size_and_worker_hint_of_one(
        self, photo_tree: Path, fake_client: Any
    ) -> None:
        ChunkWorker(fake_client, _tasks_for(photo_tree), part_size=4 * 1024 * 1024).run()

        assert all(call["part_size"] == 4 * 1024 * 1024 for call in fake_client.calls)
        assert all(call["worker_hint"] == 1 for call in fake_client.calls)

    @pytest.mark.unit
    def test_failure_does_not_stop_chunk(self, tmp_path: Path, client_factory: Any) -> None:
        for name in ["1.txt", "2.txt", "3.txt"]:
            (tmp_path / name).write_text(name)
        tasks = _tasks_for(tmp_path)
        client = client_factory({"k/1.txt": RuntimeError("quota exceeded")})

        worker = ChunkWorker(client, tasks)
        tally = worker.run()

        assert tally.success_count == 2
        assert tally.failure_count == 1
        assert client.keys == ["k/1.txt", "k/2.txt", "k/3.txt"]
        assert worker.outcomes[0].error == "quota exceeded"
        assert worker.outcomes[1].succeeded
        assert worker.outcomes[2].succeeded

    @pytest.mark.unit
    def test_missing_file_becomes_failure(self, tmp_path: Path, fake_client: Any) -> None:
        present = tmp_path / "present.txt"
        present.write_text("here")
        tasks = [
            UploadTask(tmp_path / "vanished.txt", "k/vanished.txt"),
            UploadTask(present, "k/present.txt"),
        ]

        worker = ChunkWorker(fake_client, tasks)
        tally = worker.run()

        assert (tally.success_count, tally.failure_count) == (1, 1)
        assert "vanished.txt" in (worker.outcomes[0].error or "")
        assert fake_client.keys == ["k/present.txt"]

    @pytest.mark.unit
    def test_error_without_message_uses_class_name(
        self, photo_tree: Path, client_factory: Any
    ) -> None:
        client = client_factory({"k/a.jpg": TimeoutError()})

        worker = ChunkWorker(client, _tasks_for(photo_tree))
        worker.run()

        assert worker.outcomes[0].error == "TimeoutError"

    @pytest.mark.unit
    def test_download_url_only_on_success(self, photo_tree: Path, client_factory: Any) -> None:
        client = client_factory({"k/b.jpg": RuntimeError("denied")})

        worker = ChunkWorker(client, _tasks_for(photo_tree), domain_name="cdn.example.com")
        worker.run()

        assert worker.outcomes[0].download_url == "https://cdn.example.com/k/a.jpg"
        assert worker.outcomes[1].download_url is None

    @pytest.mark.unit
    def test_outcomes_reported_as_they_happen(self, photo_tree: Path, fake_client: Any) -> None:
        seen: list[UploadOutcome] = []

        def on_outcome(outcome: UploadOutcome) -> None:
            # The upload for this outcome has already happened
            assert len(fake_client.calls) == len(seen) + 1
            seen.append(outcome)

        ChunkWorker(fake_client, _tasks_for(photo_tree), on_outcome=on_outcome).run()

        assert [o.remote_key for o in seen] == ["k/a.jpg", "k/b.jpg"]


# =============================================================================
# Aggregation
# =============================================================================


class TestRunBatch:
    """Tests for run_batch."""

    @pytest.mark.unit
    def test_uploads_every_task_once(self, many_files: Path, fake_client: Any) -> None:
        tasks = _tasks_for(many_files)

        result = run_batch(fake_client, tasks, max_workers=30)

        assert sorted(fake_client.keys) == sorted(t.remote_key for t in tasks)
        assert result.success_count == 65
        assert result.failure_count == 0
        assert result.success is True

    @pytest.mark.unit
    def test_runs_chunks_on_separate_threads(self, many_files: Path, fake_client: Any) -> None:
        run_batch(fake_client, _tasks_for(many_files), max_workers=4)

        assert 1 <= len(fake_client.threads) <= 4

    @pytest.mark.unit
    def test_order_preserved_within_chunk(self, many_files: Path, fake_client: Any) -> None:
        tasks = _tasks_for(many_files)

        result = run_batch(fake_client, tasks, max_workers=5)

        # Outcomes are grouped by chunk in chunk order
        assert [o.remote_key for o in result.outcomes] == [t.remote_key for t in tasks]
        for chunk in split_into_chunks(tasks, 5):
            positions = [fake_client.keys.index(t.remote_key) for t in chunk]
            assert positions == sorted(positions)

    @pytest.mark.unit
    def test_one_unreadable_file_isolated(
        self, many_files: Path, fake_client: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Permission denied on one file: n-1 successes, 1 failure with its reason."""
        tasks = _tasks_for(many_files)
        locked = tasks[10].local_path
        real_open = Path.open

        def fake_open(self: Path, *args: Any, **kwargs: Any) -> Any:
            if self == locked:
                raise PermissionError(13, "Permission denied", str(self))
            return real_open(self, *args, **kwargs)

        monkeypatch.setattr(Path, "open", fake_open)

        result = run_batch(fake_client, tasks, max_workers=30)

        assert result.success_count == 64
        assert result.failure_count == 1
        failed = [o for o in result.outcomes if not o.succeeded]
        assert failed[0].local_path == locked
        assert "Permission denied" in (failed[0].error or "")
        assert len(fake_client.calls) == 64

    @pytest.mark.unit
    def test_zero_successes_still_completes(self, photo_tree: Path, client_factory: Any) -> None:
        tasks = _tasks_for(photo_tree)
        client = client_factory({t.remote_key: RuntimeError("auth failed") for t in tasks})

        result = run_batch(client, tasks)

        assert result.success_count == 0
        assert result.failure_count == 2
        assert result.crashes == []

    @pytest.mark.unit
    def test_worker_crash_reported_distinctly(self, many_files: Path, fake_client: Any) -> None:
        tasks = _tasks_for(many_files)
        chunks = split_into_chunks(tasks, 5)
        poisoned = chunks[2][3].remote_key

        def on_outcome(outcome: UploadOutcome) -> None:
            if outcome.remote_key == poisoned:
                raise RuntimeError("reporter exploded")

        result = run_batch(fake_client, tasks, max_workers=5, on_outcome=on_outcome)

        assert len(result.crashes) == 1
        crash = result.crashes[0]
        assert crash.chunk_index == 2
        assert crash.reason == "reporter exploded"
        assert crash.unprocessed == chunks[2][4:]
        # Every other chunk finished; tally still covers every task
        assert result.total == len(tasks)
        assert result.success_count == len(tasks) - len(crash.unprocessed)
        assert result.failure_count == len(crash.unprocessed)

    @pytest.mark.unit
    def test_empty_task_list(self, fake_client: Any) -> None:
        result = run_batch(fake_client, [])

        assert result.success_count == 0
        assert result.failure_count == 0
        assert fake_client.calls == []

    @pytest.mark.unit
    def test_elapsed_time_recorded(self, photo_tree: Path, fake_client: Any) -> None:
        result = run_batch(fake_client, _tasks_for(photo_tree))

        assert result.elapsed_seconds >= 0

    @pytest.mark.unit
    def test_to_dict(self, photo_tree: Path, client_factory: Any) -> None:
        client = client_factory({"k/b.jpg": RuntimeError("denied")})

        data = run_batch(client, _tasks_for(photo_tree)).to_dict()

        assert data["success_count"] == 1
        assert data["failure_count"] == 1
        outcomes = data["outcomes"]
        assert isinstance(outcomes, list)
        assert outcomes[1]["error"] == "denied"
        assert data["crashes"] == []

    @pytest.mark.unit
    @given(
        count=st.integers(1, 40),
        max_workers=st.integers(1, 12),
        failing=st.sets(st.integers(0, 39)),
    )
    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_tally_matches_task_count(
        self, client_factory: Any, count: int, max_workers: int, failing: set[int]
    ) -> None:
        tasks = [UploadTask(Path(__file__), f"k/{i}") for i in range(count)]
        fail_keys: dict[str, Exception] = {
            f"k/{i}": RuntimeError(f"fail {i}") for i in failing if i < count
        }
        client = client_factory(fail_keys)

        result = run_batch(client, tasks, max_workers=max_workers)

        assert result.success_count + result.failure_count == count
        assert result.failure_count == len(fail_keys)
        assert sorted(client.keys) == sorted(t.remote_key for t in tasks)
        failed = {o.remote_key for o in result.outcomes if not o.succeeded}
        assert failed == set(fail_keys)


# =============================================================================
# Single File
# =============================================================================


class TestUploadSingleFile:
    """Tests for upload_single_file."""

    @pytest.mark.unit
    def test_success(self, photo_tree: Path, fake_client: Any) -> None:
        path = photo_tree / "a.jpg"

        outcome = upload_single_file(
            fake_client, path, "uploads/a.jpg", threads=5, domain_name="cdn.example.com"
        )

        assert outcome.succeeded
        assert outcome.size == 100
        assert outcome.download_url == "https://cdn.example.com/uploads/a.jpg"
        assert fake_client.calls[0]["worker_hint"] == 5

    @pytest.mark.unit
    def test_upload_error_is_failure_outcome(self, photo_tree: Path, client_factory: Any) -> None:
        client = client_factory({"uploads/a.jpg": RuntimeError("bucket not found")})

        outcome = upload_single_file(client, photo_tree / "a.jpg", "uploads/a.jpg")

        assert not outcome.succeeded
        assert outcome.error == "bucket not found"
        assert outcome.download_url is None

    @pytest.mark.unit
    def test_unreadable_file_is_fatal(self, tmp_path: Path, fake_client: Any) -> None:
        with pytest.raises(UnreadableSourceError):
            upload_single_file(fake_client, tmp_path / "missing.jpg", "uploads/missing.jpg")

        assert fake_client.calls == []

    @pytest.mark.unit
    def test_stat_failure_is_fatal(
        self, photo_tree: Path, fake_client: Any, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def failing_fstat(fd: int) -> Any:
            raise OSError(5, "Input/output error")

        monkeypatch.setattr("kodo_cli.batch.os.fstat", failing_fstat)

        with pytest.raises(UnreadableSourceError) as exc_info:
            upload_single_file(fake_client, photo_tree / "a.jpg", "uploads/a.jpg")

        assert "Input/output error" in exc_info.value.message
        assert fake_client.calls == []


# =============================================================================
# Exit Policy
# =============================================================================


class TestExitCode:
    """Tests for exit_code_for."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("successes", "failures", "policy", "expected"),
        [
            (0, 3, "never", 0),
            (2, 1, "never", 0),
            (0, 3, "all", 1),
            (2, 1, "all", 0),
            (0, 0, "all", 0),
            (2, 1, "any", 1),
            (3, 0, "any", 0),
        ],
    )
    def test_policies(self, successes: int, failures: int, policy: str, expected: int) -> None:
        assert exit_code_for(successes, failures, policy) == expected

    @pytest.mark.unit
    def test_crash_always_fails(self) -> None:
        assert exit_code_for(5, 0, "never", crashed=True) == 1


class TestBatchResult:
    """Tests for BatchResult properties."""

    @pytest.mark.unit
    def test_success_and_total(self) -> None:
        result = BatchResult(success_count=3, failure_count=1)

        assert result.success is False
        assert result.total == 4
