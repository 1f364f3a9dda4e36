"""Tests for the transfer engine state machine."""

import errno
import shutil
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, patch

import pytest

from courier.pipeline.events import StatusReporter
from courier.pipeline.finalizers import DocumentFinalizer
from courier.pipeline.transfer import (
    STAGING_SUFFIX,
    TransferEngine,
    ensure_partition,
    partition_path,
)
from courier.schemas.pipeline import JobState, Severity, TransferJob

DOC_NAME = "a&b&c&DOE^JOHN^A&e&8842^TPL001.PDF"
PROCESSING_DAY = date(2025, 5, 30)


def _busy() -> OSError:
    return OSError(errno.EBUSY, "Device or resource busy")


@pytest.fixture()
def registrar():
    mock = AsyncMock()
    mock.register_path.return_value = True
    return mock


@pytest.fixture()
def source_file(roots):
    f = roots.source_root / DOC_NAME
    f.write_bytes(b"%PDF-1.7 lab report " * 500)
    return f


@pytest.fixture()
def make_engine(reporter, fast_policy, registrar):
    def _make(policy=None, finalizer=None, engine_reporter=None):
        return TransferEngine(
            finalizer=finalizer or DocumentFinalizer(registrar),
            reporter=engine_reporter or reporter,
            policy=policy or fast_policy,
            today=lambda: PROCESSING_DAY,
        )

    return _make


def _job(path, roots) -> TransferJob:
    return TransferJob(
        source_path=path,
        destination_root=roots.destination_root,
        discovered_at=datetime.now(UTC),
    )


# ------------------------------------------------------------------
# Date partitioning
# ------------------------------------------------------------------


class TestPartition:
    def test_partition_path(self, tmp_path):
        assert partition_path(tmp_path / "D", PROCESSING_DAY) == tmp_path / "D" / "2025" / "05" / "30"

    def test_creates_missing_segments(self, tmp_path):
        results = ensure_partition(tmp_path, PROCESSING_DAY)
        assert [created for _, created in results] == [True, True, True]
        assert (tmp_path / "2025" / "05" / "30").is_dir()

    def test_existing_tree_is_not_an_error(self, tmp_path):
        ensure_partition(tmp_path, PROCESSING_DAY)
        results = ensure_partition(tmp_path, PROCESSING_DAY)
        assert [created for _, created in results] == [False, False, False]

    def test_partial_tree(self, tmp_path):
        (tmp_path / "2025").mkdir()
        results = ensure_partition(tmp_path, PROCESSING_DAY)
        assert [created for _, created in results] == [False, True, True]


# ------------------------------------------------------------------
# Happy path
# ------------------------------------------------------------------


class TestSuccessfulTransfer:
    async def test_archives_into_dated_path(self, make_engine, roots, source_file, registrar):
        content = source_file.read_bytes()

        job = await make_engine().run(_job(source_file, roots))

        final = roots.destination_root / "2025" / "05" / "30" / DOC_NAME
        assert job.state == JobState.DONE
        assert job.destination_path == final
        assert final.read_bytes() == content
        assert not final.with_name(DOC_NAME + STAGING_SUFFIX).exists()
        assert not source_file.exists()
        assert job.source_digest == job.staged_digest
        registrar.register_path.assert_awaited_once_with("TPL001", "8842", str(final))

    async def test_milestone_order(self, make_engine, roots, source_file, registrar):
        timeline: list[str] = []

        class TimelinePublisher:
            def publish(self, event):
                timeline.append(f"event:{event.message}")
                if event.message.endswith("results have been uploaded"):
                    timeline.append(f"source_exists:{source_file.exists()}")

        async def register(*args):
            timeline.append(f"register:source_exists:{source_file.exists()}")
            return True

        registrar.register_path.side_effect = register
        engine = make_engine(engine_reporter=StatusReporter(TimelinePublisher(), "document"))

        job = await engine.run(_job(source_file, roots))

        def index(prefix: str) -> int:
            return next(i for i, item in enumerate(timeline) if item.startswith(prefix))

        hashed = index(f"event:Created {job.source_digest} hash")
        copied = index(f"event:Copied {DOC_NAME}, staged copy hash")
        moved = index(f"event:Copied {DOC_NAME} successfully")
        registered = index("register:")
        uploaded = index("event:DOE, JOHN A results have been uploaded")
        assert hashed < copied < moved < registered < uploaded
        assert timeline[registered] == "register:source_exists:True"
        assert timeline[uploaded + 1] == "source_exists:False"

    async def test_overwrites_existing_final_file(self, make_engine, roots, source_file):
        day_dir = roots.destination_root / "2025" / "05" / "30"
        day_dir.mkdir(parents=True)
        (day_dir / DOC_NAME).write_bytes(b"stale")

        job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert (day_dir / DOC_NAME).read_bytes() != b"stale"

    async def test_folder_events(self, make_engine, roots, source_file, publisher):
        await make_engine().run(_job(source_file, roots))
        created = [e for e in publisher.events if e.message.startswith("Folder created")]
        assert len(created) == 3
        assert all(e.severity == Severity.SUCCESS for e in created)

        second = roots.source_root / "second&b&c&ROE^JANE&e&9^T2.pdf"
        second.write_bytes(b"another")
        await make_engine().run(_job(second, roots))
        existing = [e for e in publisher.events if e.message.startswith("Folder exists")]
        assert len(existing) == 3
        assert all(e.severity == Severity.INFO for e in existing)


# ------------------------------------------------------------------
# Early exits
# ------------------------------------------------------------------


class TestUnstable:
    async def test_dropped_without_touching_destination(self, make_engine, roots, source_file):
        with patch("courier.pipeline.transfer.is_stable", new=AsyncMock(return_value=False)):
            job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DROPPED_UNSTABLE
        assert source_file.exists()
        assert list(roots.destination_root.iterdir()) == []

    async def test_vanished_source_fails_io(self, make_engine, roots):
        job = await make_engine().run(_job(roots.source_root / "gone.pdf", roots))
        assert job.state == JobState.FAILED_IO
        assert job.error


def _corrupting_copy(source, target):
    shutil.copy2(source, target)
    data = bytearray(target.read_bytes())
    data[0] ^= 0xFF
    target.write_bytes(bytes(data))


class TestIntegrityMismatch:
    async def test_mismatch_keeps_source_and_staging(
        self, make_engine, roots, source_file, registrar, publisher
    ):
        with patch("courier.pipeline.transfer.copy_file", side_effect=_corrupting_copy):
            job = await make_engine().run(_job(source_file, roots))

        day_dir = roots.destination_root / "2025" / "05" / "30"
        assert job.state == JobState.DROPPED_MISMATCH
        assert job.source_digest != job.staged_digest
        assert source_file.exists()
        assert not (day_dir / DOC_NAME).exists()
        assert (day_dir / (DOC_NAME + STAGING_SUFFIX)).exists()
        registrar.register_path.assert_not_awaited()
        assert any("Hashed File mismatch" in m for m in publisher.messages)

    async def test_mismatch_can_discard_staging(self, make_engine, roots, source_file, fast_policy):
        policy = fast_policy.model_copy(update={"keep_mismatched_staging": False})
        with patch("courier.pipeline.transfer.copy_file", side_effect=_corrupting_copy):
            job = await make_engine(policy=policy).run(_job(source_file, roots))

        day_dir = roots.destination_root / "2025" / "05" / "30"
        assert job.state == JobState.DROPPED_MISMATCH
        assert source_file.exists()
        assert not (day_dir / (DOC_NAME + STAGING_SUFFIX)).exists()


class TestCopyRetry:
    async def test_transient_failures_then_success(self, make_engine, roots, source_file):
        attempts = []

        def flaky_copy(source, target):
            attempts.append(target)
            if len(attempts) <= 3:
                raise _busy()
            shutil.copy2(source, target)

        with patch("courier.pipeline.transfer.copy_file", side_effect=flaky_copy):
            job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert len(attempts) == 4

    async def test_never_more_than_five_attempts(self, make_engine, roots, source_file):
        with patch("courier.pipeline.transfer.copy_file", side_effect=_busy()) as copy:
            job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.FAILED_IO
        assert copy.call_count == 5
        assert source_file.exists()

    async def test_permanent_error_aborts_immediately(self, make_engine, roots, source_file):
        def partial_then_fail(source, target):
            target.write_bytes(b"partial")
            raise PermissionError(errno.EACCES, "Permission denied")

        with patch(
            "courier.pipeline.transfer.copy_file", side_effect=partial_then_fail
        ) as copy:
            job = await make_engine().run(_job(source_file, roots))

        day_dir = roots.destination_root / "2025" / "05" / "30"
        assert job.state == JobState.FAILED_IO
        assert copy.call_count == 1
        assert not (day_dir / (DOC_NAME + STAGING_SUFFIX)).exists()
        assert source_file.exists()

    async def test_copy_delay_between_attempts(self, make_engine, roots, source_file, fast_policy):
        policy = fast_policy.model_copy(update={"copy_delay": 10.0})
        calls = []

        def flaky_copy(source, target):
            calls.append(target)
            if len(calls) == 1:
                raise _busy()
            shutil.copy2(source, target)

        with (
            patch("courier.pipeline.transfer.copy_file", side_effect=flaky_copy),
            patch("courier.pipeline.transfer.asyncio.sleep", new_callable=AsyncMock) as sleep,
        ):
            job = await make_engine(policy=policy).run(_job(source_file, roots))

        assert job.state == JobState.DONE
        sleep.assert_any_await(10.0)


# ------------------------------------------------------------------
# Notification
# ------------------------------------------------------------------


class TestNotificationFailure:
    async def test_rejected_registration_keeps_archive(
        self, make_engine, roots, source_file, registrar, publisher
    ):
        registrar.register_path.return_value = False

        job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert job.destination_path.exists()
        assert not source_file.exists()
        assert publisher.events[-1].severity == Severity.ERROR

    async def test_finalizer_exception_is_absorbed(
        self, make_engine, roots, source_file, registrar, publisher
    ):
        registrar.register_path.side_effect = RuntimeError("records service down")

        job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert job.destination_path.exists()
        assert "records service down" in publisher.messages[-1]


class TestFinalizeFailure:
    async def test_failed_rename_cleans_staging(self, make_engine, roots, source_file, registrar):
        with patch(
            "courier.pipeline.transfer.os.replace",
            side_effect=PermissionError(errno.EACCES, "Permission denied"),
        ):
            job = await make_engine().run(_job(source_file, roots))

        day_dir = roots.destination_root / "2025" / "05" / "30"
        assert job.state == JobState.FAILED_IO
        assert not (day_dir / (DOC_NAME + STAGING_SUFFIX)).exists()
        assert source_file.exists()
        registrar.register_path.assert_not_awaited()


class TestSourceCleanup:
    async def test_busy_source_is_retried(self, make_engine, roots, source_file):
        calls = []

        def flaky_remove(path):
            calls.append(path)
            if len(calls) <= 2:
                raise _busy()
            path.unlink()

        with patch("courier.pipeline.transfer.remove_file", side_effect=flaky_remove):
            job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert len(calls) == 3
        assert not source_file.exists()

    async def test_locked_source_still_completes(
        self, make_engine, roots, source_file, registrar, publisher
    ):
        with patch(
            "courier.pipeline.transfer.remove_file", side_effect=_busy()
        ) as remove:
            job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert job.destination_path.exists()
        assert source_file.exists()
        assert remove.call_count == 5
        registrar.register_path.assert_awaited_once()
        warnings = [e for e in publisher.events if e.severity == Severity.WARNING]
        assert len(warnings) == 1
        assert "could not remove source" in warnings[0].message
        assert publisher.messages[-1] == "DOE, JOHN A results have been uploaded"

    async def test_permanent_error_is_not_retried(self, make_engine, roots, source_file):
        with patch(
            "courier.pipeline.transfer.remove_file",
            side_effect=PermissionError(errno.EACCES, "Permission denied"),
        ) as remove:
            job = await make_engine().run(_job(source_file, roots))

        assert job.state == JobState.DONE
        assert remove.call_count == 1
