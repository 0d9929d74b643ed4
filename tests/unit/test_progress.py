from __future__ import annotations

from unittest.mock import MagicMock, patch

from interior_sync.services.progress import RowProgressTracker


def test_disabled_when_not_tty():
    with patch("interior_sync.services.progress.is_tty_enabled", return_value=False):
        tracker = RowProgressTracker(3, description="pull DuAn")
    assert tracker.enabled is False
    assert tracker.pbar is None
    tracker.advance()
    tracker.advance(2)
    tracker.set_postfix(failed=0)
    tracker.close()
    assert tracker.done_rows == 3


def test_tty_creates_bar_and_closes():
    bar = MagicMock()
    with patch("interior_sync.services.progress.is_tty_enabled", return_value=True), \
            patch("interior_sync.services.progress.tqdm", return_value=bar) as tqdm_cls:
        with RowProgressTracker(5, description="push LayoutIDs") as tracker:
            tracker.advance(2)
            tracker.set_postfix(conflicts=1)

    kwargs = tqdm_cls.call_args.kwargs
    assert kwargs["total"] == 5
    assert kwargs["desc"] == "push LayoutIDs"
    assert kwargs["unit"] == "row"
    bar.update.assert_called_once_with(2)
    bar.set_postfix.assert_called_once_with(conflicts=1)
    bar.close.assert_called_once()
    assert tracker.pbar is None
