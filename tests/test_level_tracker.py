import unittest

from speakerfollow.levels.selector import rank, rank_readings
from speakerfollow.levels.tracker import SILENT_LEVEL, SILENT_READING, LevelReading, LevelTracker


class LevelTrackerTests(unittest.TestCase):
    def test_first_sample_seeds_smoothed(self) -> None:
        tracker = LevelTracker()
        tracker.record_sample(2, -3000, now=0)
        reading = tracker.read(2, now=0)
        self.assertEqual(reading.instantaneous, -3000)
        self.assertEqual(reading.smoothed, -3000)

    def test_ema_is_deterministic(self) -> None:
        tracker = LevelTracker(ema_alpha=0.3)
        tracker.record_sample(1, -4000, now=0)
        tracker.record_sample(1, -2000, now=10)
        tracker.record_sample(1, -1000, now=20)
        reading = tracker.read(1, now=20)
        # -4000 -> 0.3*-2000 + 0.7*-4000 = -3400 -> 0.3*-1000 + 0.7*-3400 = -2680
        self.assertEqual(reading.instantaneous, -1000)
        self.assertAlmostEqual(reading.smoothed, -2680.0)

    def test_unknown_channel_reads_silent(self) -> None:
        tracker = LevelTracker()
        self.assertEqual(tracker.read(5, now=0), SILENT_READING)
        self.assertEqual(SILENT_READING.smoothed, SILENT_LEVEL)

    def test_stale_channel_reads_silent_but_is_kept(self) -> None:
        tracker = LevelTracker(stale_ms=5000)
        tracker.record_sample(3, -2000, now=0)
        self.assertEqual(tracker.read(3, now=5000).instantaneous, -2000)
        self.assertEqual(tracker.read(3, now=5001), SILENT_READING)
        self.assertEqual(tracker.channels(), [3])
        described = tracker.describe(now=6000)
        self.assertTrue(described[3]["stale"])

    def test_clear_drops_everything(self) -> None:
        tracker = LevelTracker()
        tracker.record_sample(1, -2000, now=0)
        tracker.record_sample(2, -2000, now=0)
        tracker.clear()
        self.assertEqual(tracker.channels(), [])
        self.assertEqual(tracker.read(1, now=0), SILENT_READING)

    def test_recent_window_is_bounded(self) -> None:
        tracker = LevelTracker(window_size=3)
        for idx in range(5):
            tracker.record_sample(1, -1000 * (idx + 1), now=idx)
        self.assertEqual(tracker.describe(now=5)[1]["recent"], [-3000.0, -4000.0, -5000.0])
        self.assertEqual(tracker.describe(now=5)[1]["count"], 5)

    def test_bad_alpha_rejected(self) -> None:
        with self.assertRaises(ValueError):
            LevelTracker(ema_alpha=0.0)
        with self.assertRaises(ValueError):
            LevelTracker(ema_alpha=1.5)


class SelectorTests(unittest.TestCase):
    def test_rank_orders_loudest_first_and_skips_silence(self) -> None:
        tracker = LevelTracker()
        tracker.record_sample(1, -6000, now=0)
        tracker.record_sample(2, -2500, now=0)
        tracker.record_sample(3, -1500, now=0)
        ranked = rank(tracker, [1, 2, 3], now=0)
        self.assertEqual([ch for ch, _ in ranked], [3, 2])

    def test_rank_tie_goes_to_lower_channel(self) -> None:
        tracker = LevelTracker()
        tracker.record_sample(4, -2000, now=0)
        tracker.record_sample(2, -2000, now=0)
        self.assertEqual(rank(tracker, [4, 2], now=0), [(2, -2000.0), (4, -2000.0)])

    def test_rank_excludes_stale_even_with_include_all(self) -> None:
        tracker = LevelTracker(stale_ms=1000)
        tracker.record_sample(1, -2000, now=0)
        tracker.record_sample(2, -9000, now=1500)
        self.assertEqual(rank(tracker, [1, 2, 3], now=1600), [])
        self.assertEqual(rank(tracker, [1, 2, 3], now=1600, include_all=True), [(2, -9000.0)])

    def test_rank_readings_uses_requested_level(self) -> None:
        readings = {
            1: LevelReading(instantaneous=-1000, smoothed=-4000),
            2: LevelReading(instantaneous=-3000, smoothed=-3000),
        }
        self.assertEqual(rank_readings(readings, use_smoothed=False)[0][0], 1)
        self.assertEqual(rank_readings(readings, use_smoothed=True)[0][0], 2)


if __name__ == "__main__":
    unittest.main()
