"""Tests for the item state tracker and the capture adapter."""

from __future__ import annotations

import logging

import pytest

from discintake.errors import CapacityExceeded
from discintake.intake.capture import INITIAL_PROGRESS, CaptureAdapter
from discintake.intake.tracker import ItemStateTracker, Snapshot, items_from_remote
from discintake.models import ItemStatus, RemoteImage, SelectedFile, UploadItem


def _item(item_id: str, status: ItemStatus = ItemStatus.PROCESSING, progress: int = 5) -> UploadItem:
    return UploadItem(id=item_id, name=f"{item_id}.jpg", status=status, progress=progress)


def _files(count: int) -> list[SelectedFile]:
    return [SelectedFile(f"disc-{n}.jpg", "image/jpeg", b"x" * (n + 1)) for n in range(count)]


# ---------------------------------------------------------------------------
# ItemStateTracker
# ---------------------------------------------------------------------------


class TestItemStateTracker:
    def test_insertion_order_is_display_order(self) -> None:
        tracker = ItemStateTracker()
        tracker.add([_item("a"), _item("b")])
        tracker.add([_item("c")])
        assert [item.id for item in tracker.items] == ["a", "b", "c"]

    def test_duplicate_ids_rejected(self) -> None:
        tracker = ItemStateTracker([_item("a")])
        with pytest.raises(ValueError, match="Duplicate"):
            tracker.add([_item("a")])

    def test_update_replaces_item(self) -> None:
        tracker = ItemStateTracker([_item("a")])
        updated = tracker.update("a", status=ItemStatus.UPLOADING, progress=60)
        assert updated is not None
        assert tracker.get("a") == updated
        assert updated.status is ItemStatus.UPLOADING

    def test_update_clamps_progress(self) -> None:
        tracker = ItemStateTracker([_item("a")])
        assert tracker.update("a", progress=140).progress == 100  # type: ignore[union-attr]
        assert tracker.update("a", progress=-3).progress == 0  # type: ignore[union-attr]

    def test_advance_never_lowers_progress(self) -> None:
        tracker = ItemStateTracker([_item("a", progress=70)])
        assert tracker.advance("a", 65).progress == 70  # type: ignore[union-attr]
        assert tracker.advance("a", 80, ItemStatus.UPLOADING).progress == 80  # type: ignore[union-attr]
        assert tracker.get("a").status is ItemStatus.UPLOADING  # type: ignore[union-attr]

    def test_updates_for_removed_items_are_ignored(self) -> None:
        tracker = ItemStateTracker([_item("a")])
        seen: list[Snapshot] = []
        tracker.subscribe(seen.append)
        tracker.remove("a")

        assert tracker.update("a", status=ItemStatus.DONE, progress=100) is None
        assert tracker.advance("a", 90) is None
        assert tracker.items == ()
        assert len(seen) == 1

    def test_restart_supersedes_older_runs(self) -> None:
        tracker = ItemStateTracker([_item("a", ItemStatus.UPLOADING, 70)])
        restarted = tracker.restart("a", status=ItemStatus.PROCESSING, progress=10)

        assert restarted is not None
        assert restarted.generation == 1
        assert restarted.progress == 10
        assert tracker.advance("a", 90, generation=0) is None
        assert tracker.update("a", status=ItemStatus.DONE, storage_key="stale.jpg", generation=0) is None
        assert tracker.get("a") == restarted

        current = tracker.update("a", status=ItemStatus.DONE, progress=100, generation=1)
        assert current is not None and current.status is ItemStatus.DONE

    def test_progress_rounds_half_away_from_zero(self) -> None:
        assert ItemStateTracker([_item("a", progress=0)]).advance("a", 62.5).progress == 63  # type: ignore[union-attr]

        tracker = ItemStateTracker([_item("a", progress=25), _item("b", progress=0)])
        tracker.add([_item("c", progress=0), _item("d", progress=25)])
        assert tracker.overall_percent() == 13

    def test_remove_unknown_returns_false(self) -> None:
        assert ItemStateTracker().remove("missing") is False

    def test_cancel_all_keeps_finished_items(self) -> None:
        tracker = ItemStateTracker(
            [
                _item("a", ItemStatus.DONE, 100),
                _item("b"),
                _item("c", ItemStatus.ERROR, 0),
                _item("d", ItemStatus.UPLOADING),
            ]
        )
        removed = tracker.cancel_all()
        assert removed == ["b", "c", "d"]
        assert [item.id for item in tracker.items] == ["a"]

    def test_listeners_receive_full_snapshot_after_every_mutation(self) -> None:
        tracker = ItemStateTracker()
        seen: list[Snapshot] = []
        unsubscribe = tracker.subscribe(seen.append)

        tracker.add([_item("a"), _item("b")])
        tracker.update("b", progress=50)
        tracker.remove("a")
        unsubscribe()
        tracker.remove("b")

        assert [[item.id for item in snap] for snap in seen] == [["a", "b"], ["a", "b"], ["b"]]
        assert seen[1][1].progress == 50

    def test_failing_listener_does_not_break_others(self, caplog: pytest.LogCaptureFixture) -> None:
        tracker = ItemStateTracker()
        seen: list[Snapshot] = []

        def _broken(snapshot: Snapshot) -> None:
            raise RuntimeError("page went away")

        tracker.subscribe(_broken)
        tracker.subscribe(seen.append)
        with caplog.at_level(logging.ERROR, logger="discintake.intake.tracker"):
            tracker.add([_item("a")])

        assert len(seen) == 1
        assert "Change listener failed" in caplog.text

    def test_overall_percent(self) -> None:
        tracker = ItemStateTracker()
        assert tracker.overall_percent() == 0
        tracker.add([_item("a", ItemStatus.DONE, 100), _item("b", progress=50), _item("c", ItemStatus.ERROR, 0)])
        assert tracker.overall_percent() == 50

    def test_overall_percent_counts_done_as_complete(self) -> None:
        tracker = ItemStateTracker([_item("a", ItemStatus.DONE, 0), _item("b", ItemStatus.QUEUED, 0)])
        assert tracker.overall_percent() == 50

    def test_announcements(self) -> None:
        tracker = ItemStateTracker()
        messages: list[str] = []
        tracker.subscribe_announcements(messages.append)
        tracker.announce("Photo uploaded")
        assert messages == ["Photo uploaded"]

    def test_initial_items_from_remote_records(self) -> None:
        items = items_from_remote(
            [RemoteImage(url="https://cdn/a.jpg", key="u/a.jpg"), RemoteImage(url="https://cdn/b.jpg")]
        )
        assert [item.id for item in items] == ["init-0", "init-1"]
        assert items[0].name == "u/a.jpg"
        assert items[1].name == "image-1.jpg"
        assert all(item.status is ItemStatus.DONE and item.progress == 100 for item in items)
        assert not any(item.editable for item in items)

    def test_results_lists_finished_items(self) -> None:
        tracker = ItemStateTracker(items_from_remote([RemoteImage(url="https://cdn/a.jpg", key="u/a.jpg")]))
        tracker.add([_item("b")])
        assert tracker.results() == [RemoteImage(url="https://cdn/a.jpg", key="u/a.jpg")]


# ---------------------------------------------------------------------------
# CaptureAdapter
# ---------------------------------------------------------------------------


class TestCaptureAdapter:
    def _adapter(
        self, max_items: int = 10, existing: int = 0, **kwargs: int
    ) -> tuple[CaptureAdapter, ItemStateTracker]:
        tracker = ItemStateTracker([_item(f"e{n}", ItemStatus.DONE, 100) for n in range(existing)])
        return CaptureAdapter(tracker, max_items, **kwargs), tracker

    def test_accepts_all_when_there_is_room(self) -> None:
        adapter, tracker = self._adapter()
        selection = adapter.accept(_files(3))

        assert len(selection.items) == 3
        assert selection.warning is None
        assert [item.name for item in tracker.items] == ["disc-0.jpg", "disc-1.jpg", "disc-2.jpg"]
        assert all(item.status is ItemStatus.PROCESSING for item in tracker.items)
        assert all(item.progress == INITIAL_PROGRESS for item in tracker.items)
        assert all(item.editable for item in tracker.items)

    @pytest.mark.parametrize(("offered", "existing", "expected"), [(12, 8, 2), (5, 0, 5), (10, 0, 10), (11, 0, 10)])
    def test_accepts_at_most_room(self, offered: int, existing: int, expected: int) -> None:
        adapter, tracker = self._adapter(existing=existing)
        selection = adapter.accept(_files(offered))

        assert len(selection.items) == expected
        assert len(tracker) == existing + expected
        assert (selection.warning is not None) == (offered > expected)

    def test_truncated_selection_keeps_order_and_warns(self) -> None:
        adapter, tracker = self._adapter(existing=8)
        messages: list[str] = []
        tracker.subscribe_announcements(messages.append)

        selection = adapter.accept(_files(12))

        assert [item.name for item in selection.items] == ["disc-0.jpg", "disc-1.jpg"]
        assert isinstance(selection.warning, CapacityExceeded)
        assert selection.warning.accepted == 2
        assert messages == ["You can upload up to 10 photos.", "2 photos added"]

    def test_full_list_rejects_everything(self) -> None:
        adapter, tracker = self._adapter(max_items=2, existing=2)
        messages: list[str] = []
        tracker.subscribe_announcements(messages.append)
        changes: list[Snapshot] = []
        tracker.subscribe(changes.append)

        selection = adapter.accept(_files(1))

        assert selection.items == ()
        assert selection.warning is not None
        assert changes == []
        assert messages == ["You can upload up to 2 photos."]

    def test_filters_empty_and_video_files(self) -> None:
        adapter, _ = self._adapter()
        files = [
            SelectedFile("empty.jpg", "image/jpeg", b""),
            SelectedFile("clip.mov", "video/quicktime", b"data"),
            SelectedFile("disc.jpg", "image/jpeg", b"data"),
        ]
        selection = adapter.accept(files)
        assert [item.name for item in selection.items] == ["disc.jpg"]
        assert selection.skipped == 2

    def test_filters_oversized_files(self) -> None:
        adapter, _ = self._adapter(max_file_bytes=3)
        selection = adapter.accept(
            [SelectedFile("big.jpg", "image/jpeg", b"1234"), SelectedFile("ok.jpg", "image/jpeg", b"123")]
        )
        assert [item.name for item in selection.items] == ["ok.jpg"]

    def test_single_item_announcement(self) -> None:
        adapter, tracker = self._adapter()
        messages: list[str] = []
        tracker.subscribe_announcements(messages.append)
        adapter.accept(_files(1))
        assert messages == ["1 photo added"]

    def test_item_ids_are_unique(self) -> None:
        adapter, tracker = self._adapter()
        adapter.accept(_files(5))
        assert len({item.id for item in tracker.items}) == 5
