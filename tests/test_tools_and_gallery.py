import unittest

from speakerfollow.core.bus import Bus
from speakerfollow.core.config import default_config
from speakerfollow.core.lifecycle import AutoSwitchManager
from speakerfollow.devices.fake import FakeSwitcherLink, SyntheticTalkers
from speakerfollow.fusion.gallery import GRID_2X2, pick_gallery
from speakerfollow.levels.tracker import LevelTracker
from speakerfollow.tools.autoswitch import (
    get_audio_levels,
    get_auto_switch_status,
    go_gallery,
    start_auto_switch,
    stop_auto_switch,
)


class _DummyLogger:
    def __init__(self) -> None:
        self.events = []

    def emit(self, level, module, event, payload=None) -> None:  # noqa: ANN001
        self.events.append((level, module, event, payload or {}))


class GalleryTests(unittest.TestCase):
    def test_without_tracking_uses_list_order(self) -> None:
        plan = pick_gallery(None, 7, [7, 1, 2, 3, 4])
        self.assertEqual(plan.guests, (1, 2, 3))
        self.assertIn("not active", plan.method)

    def test_loudest_guests_first(self) -> None:
        tracker = LevelTracker()
        for channel, level in ((1, -4000), (2, -2000), (3, -3000), (4, -1000), (7, -500)):
            tracker.record_sample(channel, level, now=0)
        plan = pick_gallery(tracker, 7, [1, 2, 3, 4, 7], now=0)
        self.assertEqual(plan.guests, (4, 2, 3))
        self.assertEqual(plan.sources, (7, 4, 2, 3))
        self.assertEqual(plan.method, "by audio activity (loudest first)")

    def test_mixed_activity_fills_from_list(self) -> None:
        tracker = LevelTracker()
        tracker.record_sample(3, -2000, now=0)
        plan = pick_gallery(tracker, 7, [1, 2, 3, 4], now=0)
        self.assertEqual(plan.guests, (3, 1, 2))
        self.assertEqual(plan.method, "1 by audio, 2 fallback")

    def test_no_activity_falls_back(self) -> None:
        plan = pick_gallery(LevelTracker(), 7, [1, 2, 3, 4], now=0)
        self.assertEqual(plan.guests, (1, 2, 3))
        self.assertIn("no recent audio", plan.method)

    def test_boxes_follow_grid(self) -> None:
        plan = pick_gallery(None, 7, [1])
        boxes = plan.boxes()
        self.assertEqual(len(boxes), len(GRID_2X2))
        self.assertEqual(boxes[0]["source"], 7)
        self.assertEqual(boxes[1]["source"], 1)
        self.assertNotIn("source", boxes[2])


class ToolSurfaceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.bus = Bus()
        self.logger = _DummyLogger()
        self.link = FakeSwitcherLink(self.bus, names={2: "Guest A"})
        self.manager = AutoSwitchManager(self.link, self.bus, self.logger, default_config())

    def tearDown(self) -> None:
        if self.manager.active_run is not None:
            self.manager.stop()
        self.manager.monitor.stop()

    def _connect(self) -> None:
        self.link.connect()
        self.manager.handle_connection(True)

    def test_start_reports_refusal_as_text(self) -> None:
        self.assertEqual(start_auto_switch(self.manager), "Not connected to the switcher.")

    def test_start_and_stop_messages(self) -> None:
        self._connect()
        text = start_auto_switch(self.manager, candidates=[1, 2, 3], hold_ms=1500)
        self.assertIn("Monitoring inputs [1, 2, 3]", text)
        self.assertIn("Hold: 1.5s", text)
        self.assertIn("Transition: cut", text)
        self.assertTrue(get_auto_switch_status(self.manager)["running"])
        self.assertIn("already running", start_auto_switch(self.manager))
        self.assertTrue(stop_auto_switch(self.manager).startswith("Auto-switch stopped. Ran for"))
        self.assertEqual(get_auto_switch_status(self.manager), {"running": False})
        self.assertEqual(stop_auto_switch(self.manager), "Auto-switch is not running.")

    def test_host_hybrid_start_message(self) -> None:
        self._connect()
        text = start_auto_switch(self.manager, mode="host_hybrid", host_channel=7, composite_box=1)
        self.assertIn("Host (input 7)", text)
        self.assertIn("box 2", text)

    def test_audio_levels_are_loudest_first(self) -> None:
        tracker = self.manager.tracker
        tracker.record_sample(1, -3000)
        tracker.record_sample(2, -1500)
        tracker.record_sample(3, -9000)
        levels = get_audio_levels(self.manager)
        self.assertEqual([row["input"] for row in levels["active"]], [2, 1])
        self.assertFalse(levels["tracking_active"])
        self.assertEqual(sorted(levels["channels"]), ["1", "2", "3"])
        everything = get_audio_levels(self.manager, candidates=[1, 3], include_all=True)
        self.assertEqual([row["input"] for row in everything["active"]], [1, 3])

    def test_gallery_requires_connection(self) -> None:
        self.assertEqual(go_gallery(self.manager), "Not connected to the switcher.")

    def test_gallery_sets_boxes_then_program(self) -> None:
        self._connect()
        self.manager.tracker.record_sample(2, -2000)
        text = go_gallery(self.manager, host=7, guests=[1, 2, 3, 4])
        kinds = [c[0] for c in self.link.commands]
        self.assertEqual(kinds, ["box", "box", "box", "box", "program"])
        self.assertEqual(self.link.commands[-1], ("program", 6000, 0))
        self.assertEqual(self.link.boxes[(0, 0)]["source"], 7)
        self.assertEqual(self.link.boxes[(0, 1)]["source"], 2)
        self.assertIn("Guest A (2)", text)
        self.assertIn("[HOST]", text)
        self.assertIn("gallery_applied", [e[2] for e in self.logger.events])


class SyntheticTalkerTests(unittest.TestCase):
    def test_active_talker_rotates(self) -> None:
        talkers = SyntheticTalkers([1, 2, 3], [2, 3], turn_s=4.0, seed=1)
        self.assertEqual(talkers.active_talker(0.5), 2)
        self.assertEqual(talkers.active_talker(4.5), 3)
        self.assertEqual(talkers.active_talker(8.5), 2)

    def test_levels_cover_inputs_and_stay_in_range(self) -> None:
        talkers = SyntheticTalkers([1, 2, 3], [2], seed=3)
        for step in range(50):
            levels = talkers.levels(step * 0.05)
            self.assertEqual(sorted(levels), [1, 2, 3])
            for value in levels.values():
                self.assertGreaterEqual(value, -10000.0)
                self.assertLessEqual(value, 0.0)


if __name__ == "__main__":
    unittest.main()
