import threading
import unittest

from speakerfollow.core.config import default_config
from speakerfollow.devices.fake import FakeSwitcherLink
from speakerfollow.fusion.mode_executor import CommandDispatcher, CommandGroup, ModeExecutor, SwitchCommand
from speakerfollow.fusion.switch_state_machine import AutoSwitchConfig


class _DummyLogger:
    def __init__(self) -> None:
        self.events = []

    def emit(self, level, module, event, payload=None) -> None:  # noqa: ANN001
        self.events.append((level, module, event, payload or {}))


def _executor(**options) -> ModeExecutor:
    return ModeExecutor(AutoSwitchConfig.from_options(default_config(), options))


def _dispatch(link: FakeSwitcherLink, logger: _DummyLogger, *groups: CommandGroup) -> CommandDispatcher:
    dispatcher = CommandDispatcher(link, None, logger)
    for group in groups:
        dispatcher.submit(group)
    dispatcher.wait_idle(1.0)
    return dispatcher


class ModeExecutorPlanTests(unittest.TestCase):
    def test_program_cut(self) -> None:
        group = _executor().commands_for(2)
        self.assertEqual(group.label, "cut")
        self.assertEqual(group.commands, (SwitchCommand("program", (2, 0)),))

    def test_program_dissolve_is_chained(self) -> None:
        group = _executor(transition="dissolve", me=1).commands_for(4)
        self.assertTrue(group.chained)
        self.assertEqual([c.kind for c in group.commands], ["preview", "auto"])
        self.assertEqual(group.commands[0].args, (4, 1))
        self.assertEqual(group.commands[1].args, (1,))

    def test_composite_box_leaves_program_alone(self) -> None:
        group = _executor(mode="composite_box", composite_box=2).commands_for(3)
        self.assertEqual(group.commands, (SwitchCommand("box", (2, {"source": 3}, 0)),))

    def test_host_hybrid_host_goes_fullscreen(self) -> None:
        group = _executor(mode="host_hybrid", host_channel=7).commands_for(7)
        self.assertEqual(group.label, "host_fullscreen")
        self.assertEqual(group.commands, (SwitchCommand("program", (7, 0)),))

    def test_host_hybrid_guest_box_then_composite_program(self) -> None:
        group = _executor(mode="host_hybrid", host_channel=7, composite_box=1).commands_for(3)
        self.assertEqual(group.label, "guest_composite")
        self.assertEqual(
            group.commands,
            (SwitchCommand("box", (1, {"source": 3}, 0)), SwitchCommand("program", (6000, 0))),
        )


class CommandDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.link = FakeSwitcherLink()
        self.link.connect()
        self.logger = _DummyLogger()

    def test_host_hybrid_order_on_device(self) -> None:
        group = _executor(mode="host_hybrid").commands_for(2)
        _dispatch(self.link, self.logger, group)
        self.assertEqual(self.link.commands, [("box", 1, {"source": 2}, 0), ("program", 6000, 0)])
        self.assertEqual(self.link.program, 6000)
        self.assertEqual(self.link.boxes[(0, 1)]["source"], 2)

    def test_dissolve_stops_when_preview_fails(self) -> None:
        self.link.fail("preview")
        dispatcher = _dispatch(self.link, self.logger, _executor(transition="dissolve").commands_for(2))
        self.assertEqual(self.link.commands, [])
        self.assertEqual(dispatcher.stats.failed, 1)
        self.assertEqual(dispatcher.stats.failures[0]["command"], "preview(2, 0)")
        self.assertIn("command_failed", [e[2] for e in self.logger.events])
        dispatcher.cancel()

    def test_failure_does_not_block_later_switches(self) -> None:
        executor = _executor()
        self.link.fail("program")
        dispatcher = CommandDispatcher(self.link, None, self.logger)
        dispatcher.submit(executor.commands_for(2))
        dispatcher.wait_idle(1.0)
        self.link.recover("program")
        dispatcher.submit(executor.commands_for(3))
        dispatcher.wait_idle(1.0)
        self.assertEqual(self.link.commands, [("program", 3, 0)])
        self.assertEqual(dispatcher.stats.failed, 1)
        self.assertEqual(dispatcher.stats.dispatched, 1)
        dispatcher.cancel()

    def test_unchained_group_continues_after_failure(self) -> None:
        self.link.fail("box")
        group = _executor(mode="host_hybrid").commands_for(2)
        dispatcher = _dispatch(self.link, self.logger, group)
        self.assertEqual(self.link.commands, [("program", 6000, 0)])
        self.assertEqual(dispatcher.stats.failed, 1)
        dispatcher.cancel()

    def test_submit_after_cancel_is_refused(self) -> None:
        dispatcher = CommandDispatcher(self.link, None, self.logger)
        dispatcher.cancel()
        self.assertFalse(dispatcher.submit(_executor().commands_for(2)))
        self.assertEqual(self.link.commands, [])

    def test_cancel_waits_for_in_flight_and_drops_queued(self) -> None:
        entered = threading.Event()
        release = threading.Event()

        class _SlowLink(FakeSwitcherLink):
            def change_program_input(self, source: int, me: int = 0) -> None:
                if not entered.is_set():
                    entered.set()
                    release.wait(2.0)
                super().change_program_input(source, me)

        link = _SlowLink()
        link.connect()
        executor = _executor()
        dispatcher = CommandDispatcher(link, None, self.logger)
        dispatcher.submit(executor.commands_for(2))
        self.assertTrue(entered.wait(1.0))
        dispatcher.submit(executor.commands_for(3))

        cancelled = threading.Event()

        def _cancel() -> None:
            dispatcher.cancel()
            cancelled.set()

        canceller = threading.Thread(target=_cancel)
        canceller.start()
        self.assertFalse(cancelled.wait(0.1))
        release.set()
        canceller.join(2.0)
        self.assertTrue(cancelled.is_set())
        self.assertEqual(link.commands, [("program", 2, 0)])
        self.assertEqual(dispatcher.stats.discarded, 1)


if __name__ == "__main__":
    unittest.main()
