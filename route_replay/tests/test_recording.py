"""
Tests for RecordingController: state machine, sample acceptance, sequence
numbering, distance/duration accumulation, stops, failure handling and
teardown.
"""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from route_replay.exceptions import InvalidState, PersistenceError, SensorErrorKind
from route_replay.geodesy import total_distance
from route_replay.models import RouteStatus
from route_replay.recording import RecorderState, RecordingTelemetry
from route_replay.store import InMemoryRouteStore

from .test_common import degrees_for, make_controller, settle


class CommitThenFailStore(InMemoryRouteStore):
    """Stores the point, then reports the write as failed (a reply lost on the wire)."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    async def append_point(self, *args, **kwargs):
        point = await super().append_point(*args, **kwargs)
        if self.failures:
            self.failures -= 1
            raise PersistenceError("Timeout on POST route_points")
        return point


class TestRecordingTelemetry(unittest.TestCase):

    def test_default_snapshot_is_idle_and_empty(self):
        data = RecordingTelemetry()
        self.assertIs(data.state, RecorderState.IDLE)
        self.assertIsNone(data.route_id)
        self.assertEqual(data.point_count, 0)
        self.assertEqual(data.distance, 0.0)
        self.assertIsNone(data.last_position)

    def test_formatted_values(self):
        data = RecordingTelemetry(distance=1500, duration=3661)
        self.assertEqual(data.formatted_distance, "1.50km")
        self.assertEqual(data.formatted_duration, "1h 1m 1s")


class TestStateMachine(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.controller, self.sensor, self.store = make_controller()

    async def asyncTearDown(self):
        await self.controller.close()

    async def test_start_creates_recording_route(self):
        route = await self.controller.start()

        self.assertIs(self.controller.state, RecorderState.RECORDING)
        self.assertEqual(self.controller.data.route_id, route.id)
        stored = await self.store.get_route(route.id)
        self.assertIs(stored.status, RouteStatus.RECORDING)
        self.assertEqual(stored.owner, "user-1")
        self.assertTrue(stored.title.startswith("Route "))
        self.assertEqual(self.sensor.subscriber_count, 1)

    async def test_start_with_title(self):
        route = await self.controller.start(title="Taco crawl")
        self.assertEqual(route.title, "Taco crawl")

    async def test_start_twice_is_rejected(self):
        await self.controller.start()
        with self.assertRaises(InvalidState):
            await self.controller.start()
        self.assertEqual(len(await self.store.list_routes("user-1")), 1)

    async def test_pause_and_resume_update_store(self):
        route = await self.controller.start()

        await self.controller.pause()
        self.assertIs(self.controller.state, RecorderState.PAUSED)
        self.assertIs((await self.store.get_route(route.id)).status, RouteStatus.PAUSED)

        await self.controller.resume()
        self.assertIs(self.controller.state, RecorderState.RECORDING)
        self.assertIs((await self.store.get_route(route.id)).status, RouteStatus.RECORDING)

    async def test_illegal_transitions_rejected_without_side_effects(self):
        with self.assertRaises(InvalidState):
            await self.controller.finish()
        with self.assertRaises(InvalidState):
            await self.controller.pause()
        with self.assertRaises(InvalidState):
            await self.controller.resume()
        self.assertIs(self.controller.state, RecorderState.IDLE)
        self.assertEqual(await self.store.list_routes("user-1"), [])

        await self.controller.start()
        with self.assertRaises(InvalidState):
            await self.controller.resume()
        self.assertIs(self.controller.state, RecorderState.RECORDING)

    async def test_finish_from_paused(self):
        await self.controller.start()
        await self.controller.pause()
        route = await self.controller.finish()
        self.assertIs(route.status, RouteStatus.COMPLETED)

    async def test_completed_is_terminal(self):
        await self.controller.start()
        await self.controller.finish()
        for command in (self.controller.start, self.controller.pause,
                        self.controller.resume, self.controller.finish):
            with self.assertRaises(InvalidState):
                await command()


class TestSampleAcceptance(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.controller, self.sensor, self.store = make_controller()
        self.route = await self.controller.start()

    async def asyncTearDown(self):
        await self.controller.close()

    async def test_two_points_ten_meters_apart(self):
        self.sensor.publish(0.0, 0.0)
        self.sensor.publish(degrees_for(10), 0.0)
        await settle()

        route = await self.controller.finish()

        self.assertIs(route.status, RouteStatus.COMPLETED)
        self.assertIsNotNone(route.finished_at)
        self.assertAlmostEqual(route.total_distance, 10, delta=0.01)
        self.assertEqual(len(await self.store.list_points(route.id)), 2)

    async def test_sequences_are_gapless_in_arrival_order(self):
        for i in range(20):
            self.sensor.publish(52.0 + i * 0.0001, 13.0)
        await settle()

        points = await self.store.list_points(self.route.id)
        self.assertEqual([p.sequence for p in points], list(range(20)))
        self.assertEqual([p.latitude for p in points], [52.0 + i * 0.0001 for i in range(20)])
        self.assertEqual(self.controller.data.point_count, 20)

    async def test_duplicates_are_not_filtered(self):
        self.sensor.publish(52.0, 13.0)
        self.sensor.publish(52.0, 13.0)
        await settle()
        self.assertEqual(self.controller.data.point_count, 2)
        self.assertEqual(self.controller.data.distance, 0.0)

    async def test_distance_matches_persisted_path(self):
        for i in range(10):
            self.sensor.publish(52.0 + i * 0.0003, 13.0 + (i % 3) * 0.0002)
        await settle()

        points = await self.store.list_points(self.route.id)
        self.assertAlmostEqual(self.controller.data.distance, total_distance(points), places=6)
        self.assertEqual(len(self.controller.path), 10)

    async def test_paused_samples_only_update_live_position(self):
        self.sensor.publish(52.0, 13.0)
        await settle()
        await self.controller.pause()

        self.sensor.publish(52.001, 13.0)
        self.sensor.publish(52.002, 13.0)
        await settle()

        self.assertEqual(self.controller.data.point_count, 1)
        self.assertEqual(self.controller.data.distance, 0.0)
        self.assertEqual(self.controller.data.last_position.lat, 52.002)

        await self.controller.resume()
        self.sensor.publish(52.003, 13.0)
        await settle()

        points = await self.store.list_points(self.route.id)
        self.assertEqual([p.sequence for p in points], [0, 1])
        self.assertAlmostEqual(
            self.controller.data.distance, 333.58, delta=0.5
        )

    async def test_no_points_after_finish(self):
        await self.controller.finish()
        self.sensor.publish(52.0, 13.0)
        await settle()
        self.assertEqual(await self.store.list_points(self.route.id), [])
        self.assertEqual(self.sensor.subscriber_count, 0)

    async def test_non_finite_sample_is_ignored(self):
        self.sensor.publish(float("nan"), 13.0)
        await settle()
        self.assertEqual(self.controller.data.point_count, 0)
        self.assertEqual(self.controller.data.sensor_errors, 1)


class TestFailureHandling(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.controller, self.sensor, self.store = make_controller()
        self.route = await self.controller.start()

    async def asyncTearDown(self):
        await self.controller.close()

    async def test_sensor_error_is_surfaced_and_listening_continues(self):
        self.sensor.publish_error(SensorErrorKind.UNAVAILABLE, "signal lost")
        self.sensor.publish(52.0, 13.0)
        await settle()

        self.assertEqual(self.controller.data.sensor_errors, 1)
        self.assertIn("signal lost", self.controller.data.last_error)
        self.assertEqual(self.controller.data.point_count, 1)
        self.assertIs(self.controller.state, RecorderState.RECORDING)

    async def test_failed_point_write_is_skipped_without_gap(self):
        real_append = self.store.append_point
        self.store.append_point = AsyncMock(side_effect=[
            await real_append(self.route.id, 52.0, 13.0, 0, self.route.started_at),
            PersistenceError("store offline"),
        ])
        self.sensor.publish(52.0, 13.0)
        self.sensor.publish(52.001, 13.0)
        await settle()

        self.assertEqual(self.controller.data.failed_writes, 1)
        self.assertIn("store offline", self.controller.data.last_error)
        self.assertEqual(self.controller.data.point_count, 1)

        self.store.append_point = real_append
        self.sensor.publish(52.002, 13.0)
        await settle()

        points = await self.store.list_points(self.route.id)
        self.assertEqual([p.sequence for p in points], [0, 1])

    async def test_failed_status_update_does_not_abort(self):
        with patch.object(self.store, "update_route_status",
                          AsyncMock(side_effect=PersistenceError("timeout"))):
            await self.controller.pause()
        self.assertIs(self.controller.state, RecorderState.PAUSED)
        self.assertIn("timeout", self.controller.data.last_error)

    async def test_failed_finish_can_be_retried(self):
        self.sensor.publish(52.0, 13.0)
        await settle()

        with patch.object(self.store, "update_route_status",
                          AsyncMock(side_effect=PersistenceError("down"))):
            with self.assertRaises(PersistenceError):
                await self.controller.finish()

        self.assertIs(self.controller.state, RecorderState.COMPLETED)
        self.assertEqual(self.sensor.subscriber_count, 0)

        route = await self.controller.finish()
        self.assertIs(route.status, RouteStatus.COMPLETED)
        with self.assertRaises(InvalidState):
            await self.controller.finish()

    async def test_point_committed_before_error_is_adopted(self):
        controller, sensor, store = make_controller(store=CommitThenFailStore(failures=1))
        route = await controller.start()
        step = degrees_for(10)
        for i in range(5):
            sensor.publish(52.0 + i * step, 13.0)
        await settle()

        points = await store.list_points(route.id)
        self.assertEqual([p.sequence for p in points], [0, 1, 2, 3, 4])
        self.assertEqual(controller.data.point_count, 5)
        self.assertEqual(controller.data.failed_writes, 0)
        self.assertAlmostEqual(controller.data.distance, 40, delta=0.1)
        await controller.close()

    async def test_unexpected_store_error_is_surfaced_and_recording_continues(self):
        real_append = self.store.append_point
        self.store.append_point = AsyncMock(side_effect=KeyError("id"))
        self.sensor.publish(52.0, 13.0)
        await settle()

        self.assertFalse(self.controller._consumer_task.done())
        self.assertEqual(self.controller.data.failed_writes, 1)
        self.assertIn("KeyError", self.controller.data.last_error)

        self.store.append_point = real_append
        self.sensor.publish(52.001, 13.0)
        await settle()
        self.assertEqual(self.controller.data.point_count, 1)


class TestStops(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.controller, self.sensor, self.store = make_controller()

    async def asyncTearDown(self):
        await self.controller.close()

    async def test_add_stop_without_position_is_rejected(self):
        route = await self.controller.start()
        with self.assertRaises(InvalidState):
            await self.controller.add_stop("Cafe")
        self.assertEqual(await self.store.list_stops(route.id), [])

    async def test_add_stop_when_idle_is_rejected(self):
        with self.assertRaises(InvalidState):
            await self.controller.add_stop("Cafe")

    async def test_stop_sequence_is_current_point_count(self):
        route = await self.controller.start()
        self.sensor.publish(52.0, 13.0)
        self.sensor.publish(52.001, 13.0)
        await settle()

        stop = await self.controller.add_stop("Bakery", notes="croissants", rating=4)

        self.assertEqual(stop.sequence, 2)
        self.assertEqual(stop.latitude, 52.001)
        self.assertEqual(stop.rating, 4)
        self.assertEqual(self.controller.data.stop_count, 1)
        self.assertEqual([s.id for s in await self.store.list_stops(route.id)], [stop.id])

    async def test_add_stop_while_paused(self):
        await self.controller.start()
        self.sensor.publish(52.0, 13.0)
        await settle()
        await self.controller.pause()

        stop = await self.controller.add_stop("Market")
        self.assertEqual(stop.rating, 5)
        self.assertEqual(stop.sequence, 1)

    async def test_invalid_rating_rejected(self):
        await self.controller.start()
        self.sensor.publish(52.0, 13.0)
        await settle()
        with self.assertRaises(ValueError):
            await self.controller.add_stop("Diner", rating=9)
        self.assertEqual(self.controller.data.stop_count, 0)

    async def test_failed_stop_write_raises_and_is_surfaced(self):
        await self.controller.start()
        self.sensor.publish(52.0, 13.0)
        await settle()
        self.store.create_stop = AsyncMock(side_effect=PersistenceError("nope"))
        with self.assertRaises(PersistenceError):
            await self.controller.add_stop("Diner")
        self.assertIn("nope", self.controller.data.last_error)


class TestDurationAndTeardown(unittest.IsolatedAsyncioTestCase):

    async def test_duration_is_recomputed_from_start_instant(self):
        now = [100.0]
        controller, sensor, store = make_controller(clock=lambda: now[0])
        await controller.start()

        now[0] = 107.9
        await settle()
        self.assertEqual(controller.data.duration, 7)

        now[0] = 165.2
        route = await controller.finish()
        self.assertEqual(route.total_duration, 65)

    async def test_finish_cancels_background_tasks(self):
        controller, sensor, store = make_controller()
        await controller.start()
        consumer, ticker = controller._consumer_task, controller._ticker_task

        await controller.finish()

        self.assertTrue(consumer.done())
        self.assertTrue(ticker.done())
        self.assertIsNone(controller._consumer_task)
        self.assertIsNone(controller._ticker_task)

    async def test_close_tears_down_without_finishing(self):
        controller, sensor, store = make_controller()
        route = await controller.start()
        ticker = controller._ticker_task

        await controller.close()

        self.assertTrue(ticker.done())
        self.assertEqual(sensor.subscriber_count, 0)
        self.assertIs((await store.get_route(route.id)).status, RouteStatus.RECORDING)
        with self.assertRaises(InvalidState):
            await controller.finish()
        # Idempotent
        await controller.close()

    async def test_close_during_start_leaves_nothing_running(self):
        controller, sensor, store = make_controller()
        release = asyncio.Event()
        real_create = store.create_route

        async def slow_create(*args, **kwargs):
            await release.wait()
            return await real_create(*args, **kwargs)

        store.create_route = slow_create
        start = asyncio.ensure_future(controller.start())
        await asyncio.sleep(0)
        close = asyncio.ensure_future(controller.close())
        await asyncio.sleep(0)
        release.set()
        await asyncio.gather(start, close)

        self.assertEqual(sensor.subscriber_count, 0)
        self.assertIsNone(controller._consumer_task)
        self.assertIsNone(controller._ticker_task)
        with self.assertRaises(InvalidState):
            await controller.pause()

    async def test_listeners_receive_snapshots(self):
        controller, sensor, store = make_controller()
        seen = []
        remove = controller.add_listener(seen.append)

        await controller.start()
        sensor.publish(52.0, 13.0)
        await settle()

        self.assertTrue(any(s.point_count == 1 for s in seen))
        remove()
        count = len(seen)
        await controller.pause()
        self.assertEqual(len(seen), count)
        await controller.close()

    async def test_independent_sessions_do_not_share_state(self):
        first, sensor_a, store = make_controller()
        second, sensor_b, _ = make_controller(store=store)
        await first.start()
        await second.start()

        sensor_a.publish(52.0, 13.0)
        await settle()

        self.assertEqual(first.data.point_count, 1)
        self.assertEqual(second.data.point_count, 0)
        await first.close()
        await second.close()
        await asyncio.sleep(0)
