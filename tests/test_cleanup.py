"""
Tests for temporary file tracking and deferred cleanup.
"""

import asyncio
import logging


class TestRegisterAndDrain:
    def test_drain_deletes_registered_files(self, tracker):
        first = tracker.allocate("out", ".pdf")
        second = tracker.allocate("out", ".pdf")
        first.write_bytes(b"a")
        second.write_bytes(b"b")

        removed = tracker.drain()

        assert removed == [first, second]
        assert not first.exists() and not second.exists()

    def test_allocate_returns_unique_registered_paths(self, tracker):
        paths = {tracker.allocate("split", ".pdf") for _ in range(20)}
        assert len(paths) == 20
        assert set(tracker.pending) == paths
        assert all(path.parent == tracker.work_dir for path in paths)

    def test_second_drain_is_a_no_op(self, tracker):
        path = tracker.allocate("out", ".txt")
        path.write_text("x")
        tracker.drain()

        path.write_text("recreated")
        assert tracker.drain() == []
        assert path.exists()

    def test_registering_twice_yields_one_deletion_attempt(self, tracker):
        path = tracker.work_dir / "upload.pdf"
        tracker.register(path)
        tracker.register(path)
        assert tracker.pending == [path]

    def test_missing_files_are_skipped(self, tracker):
        tracker.allocate("never-written", ".pdf")
        assert tracker.drain() == []

    def test_delete_failure_is_logged_not_raised(self, tracker, caplog):
        blocker = tracker.work_dir / "a-directory"
        blocker.mkdir()
        tracker.register(blocker)
        survivor = tracker.allocate("out", ".pdf")
        survivor.write_bytes(b"x")

        with caplog.at_level(logging.WARNING, logger="pdfpro_backend.cleanup"):
            removed = tracker.drain()

        assert removed == [survivor]
        assert "Failed to delete temporary file" in caplog.text


class TestDiscover:
    def test_discovers_only_own_prefix(self, tracker):
        prefix = tracker.unique_prefix("page")
        other = tracker.unique_prefix("page")
        for number in range(3):
            (tracker.work_dir / f"{prefix}-{number:03d}.png").write_bytes(b"png")
        (tracker.work_dir / f"{other}-000.png").write_bytes(b"png")

        found = tracker.discover(prefix)

        assert [path.name for path in found] == [f"{prefix}-{number:03d}.png" for number in range(3)]
        assert set(found) <= set(tracker.pending)
        assert (tracker.work_dir / f"{other}-000.png") not in tracker.pending


class TestScheduleDrain:
    def test_zero_delay_drains_immediately(self, tracker):
        path = tracker.allocate("out", ".pdf")
        path.write_bytes(b"x")

        async def scenario():
            return tracker.schedule_drain(0)

        assert asyncio.run(scenario()) is None
        assert not path.exists()

    def test_delayed_drain_waits_for_grace_period(self, tracker):
        path = tracker.allocate("out", ".pdf")
        path.write_bytes(b"x")

        async def scenario():
            tracker.schedule_drain(0.05)
            still_there = path.exists()
            await asyncio.sleep(0.2)
            return still_there

        assert asyncio.run(scenario()) is True
        assert not path.exists()

    def test_explicit_drain_cancels_pending_timer(self, tracker):
        path = tracker.allocate("out", ".pdf")
        path.write_bytes(b"x")

        async def scenario():
            handle = tracker.schedule_drain(10)
            tracker.drain()
            return handle

        handle = asyncio.run(scenario())
        assert handle.cancelled()
        assert not path.exists()

    def test_rescheduling_cancels_the_earlier_timer(self, tracker):
        async def scenario():
            first = tracker.schedule_drain(10)
            second = tracker.schedule_drain(20)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.cancelled()
        assert not second.cancelled()
