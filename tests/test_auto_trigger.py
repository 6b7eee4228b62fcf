import asyncio
import unittest

from auto_trigger import AutoTriggerController, make_signature
from event_channel import ChannelKey, EventChannel, Topic
from history_store import HistoryStore
from models import InputState, Settings, StartResult
from orchestrator import JobOrchestrator
from translation_service import GatewayError


DELAY = 0.01
SETTLE = 0.08


class FakeGateway:
    def __init__(self) -> None:
        self.started = []
        self.start_error = None

    async def start(self, request) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started.append(request)

    async def abort(self, job_id: str) -> None:
        pass


class AutoTriggerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.channel = EventChannel()
        self.gateway = FakeGateway()
        self.orchestrator = JobOrchestrator(self.channel, self.gateway, HistoryStore(), Settings)
        self.input = InputState(target_language="ja")
        self.controller = AutoTriggerController(self.orchestrator, self.input, delay=DELAY)
        self.controller.attach()

    async def asyncTearDown(self) -> None:
        self.controller.close()

    async def _finish_active_job(self, ok: bool = True) -> None:
        job = self.orchestrator.active_job
        await self.channel.emit(ChannelKey(job.id), Topic.CHUNK, "out")
        await self.channel.emit(ChannelKey(job.id), Topic.DONE, {"ok": ok})

    def _started_texts(self):
        return [request.input for request in self.gateway.started]

    async def test_burst_of_edits_starts_once(self):
        for text in ("H", "He", "Hel", "Hello"):
            self.input.set_text(text)
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["Hello"])
        self.assertEqual(self.controller.last_executed_signature, "auto|ja|Hello")

    async def test_unchanged_signature_is_not_rerun(self):
        self.input.set_text("Hello")
        await asyncio.sleep(SETTLE)
        await self._finish_active_job()

        self.input.set_text("Hello ")
        await asyncio.sleep(SETTLE)
        self.controller.notify_change()
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["Hello"])

    async def test_changing_any_signature_part_reruns(self):
        self.input.set_text("Hello")
        await asyncio.sleep(SETTLE)
        await self._finish_active_job()

        self.input.set_target_language("en")
        await asyncio.sleep(SETTLE)
        await self._finish_active_job()

        self.input.set_source_language("ja")
        await asyncio.sleep(SETTLE)
        await self._finish_active_job()

        self.input.set_text("Goodbye")
        await asyncio.sleep(SETTLE)

        targets = [(r.source, r.target, r.input) for r in self.gateway.started]
        self.assertEqual(
            targets,
            [(None, "ja", "Hello"), (None, "en", "Hello"), ("ja", "en", "Hello"), ("ja", "en", "Goodbye")],
        )

    async def test_blank_text_never_arms_timer(self):
        self.input.set_text("   \n")
        self.assertFalse(self.controller.armed)
        await asyncio.sleep(SETTLE)
        self.assertEqual(self.gateway.started, [])

    async def test_clearing_text_disarms_pending_timer(self):
        self.input.set_text("Hello")
        self.assertTrue(self.controller.armed)
        self.input.set_text("")
        await asyncio.sleep(SETTLE)
        self.assertEqual(self.gateway.started, [])

    async def test_timer_skips_while_job_is_streaming(self):
        self.input.set_text("First")
        self.assertIs(await self.controller.run_now(), StartResult.STARTED)

        self.input.set_text("Second")
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["First"])

        await self._finish_active_job()
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["First"])

        self.input.set_text("Second!")
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["First", "Second!"])

    async def test_manual_start_suppresses_matching_auto_fire(self):
        self.input.set_text("Hello")
        self.assertIs(await self.controller.run_now(), StartResult.STARTED)
        self.assertFalse(self.controller.armed)
        await self._finish_active_job()

        self.controller.notify_change()
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["Hello"])

    async def test_signature_not_recorded_when_start_fails(self):
        self.gateway.start_error = GatewayError("engine missing")
        self.input.set_text("Hello")
        await asyncio.sleep(SETTLE)
        self.assertIsNone(self.controller.last_executed_signature)

        self.orchestrator.acknowledge_error()
        self.gateway.start_error = None
        self.controller.notify_change()
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["Hello"])

    async def test_failed_job_does_not_suppress_rerun(self):
        self.input.set_text("Hello")
        await asyncio.sleep(SETTLE)
        self.assertEqual(self.controller.last_executed_signature, "auto|ja|Hello")
        await self._finish_active_job(ok=False)
        self.assertIsNone(self.controller.last_executed_signature)

        self.controller.notify_change()
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["Hello", "Hello"])

    async def test_failed_job_restores_previous_signature(self):
        self.input.set_text("Hello")
        await asyncio.sleep(SETTLE)
        await self._finish_active_job()

        self.input.set_text("World")
        await asyncio.sleep(SETTLE)
        await self._finish_active_job(ok=False)
        self.assertEqual(self.controller.last_executed_signature, "auto|ja|Hello")

    async def test_cancelled_job_does_not_suppress_rerun(self):
        self.input.set_text("Hello")
        self.assertIs(await self.controller.run_now(), StartResult.STARTED)
        await self.orchestrator.cancel()
        self.assertIsNone(self.controller.last_executed_signature)

        self.controller.notify_change()
        await asyncio.sleep(SETTLE)
        self.assertEqual(self._started_texts(), ["Hello", "Hello"])

    async def test_job_failing_during_start_records_no_signature(self):
        async def start_and_fail(request) -> None:
            self.gateway.started.append(request)
            await self.channel.emit(ChannelKey(request.id), Topic.DONE, {"ok": False, "reason": "timeout"})

        self.gateway.start = start_and_fail
        self.input.set_text("Hello")
        self.assertIs(await self.controller.run_now(), StartResult.STARTED)
        self.assertIsNone(self.controller.last_executed_signature)

    async def test_manual_start_with_blank_input_is_rejected(self):
        self.assertIs(await self.controller.run_now(), StartResult.REJECTED)
        self.assertEqual(self.gateway.started, [])


class SignatureTests(unittest.TestCase):
    def test_signature_trims_text_and_names_auto_detect(self):
        self.assertEqual(make_signature(None, "ja", "  Hello\n"), "auto|ja|Hello")
        self.assertEqual(make_signature("en", "ja", "Hello"), "en|ja|Hello")


if __name__ == "__main__":
    unittest.main()
