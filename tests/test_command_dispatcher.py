"""Tests for command dispatch and the diagnostic handlers."""

import json

import pytest

from diag_agent.communication.packet import CommandCode, Packet, encode
from diag_agent.core.command_dispatcher import CommandDispatcher
from diag_agent.core.connection_state import ConnectionState
from diag_agent.core.errors import CollaboratorError


def sent_packets(transport):
    return [json.loads(frame) for frame in transport.sent]


class TestRouting:
    """Test routing of inbound frames."""

    def test_stat_request_end_to_end(self, dispatcher, open_transport, stat_collector):
        dispatcher.handle_frame('{"type": 100}', open_transport)

        assert len(stat_collector.calls) == 1
        assert sent_packets(open_transport) == [{
            "type": 101,
            "body": {"pid": 42, "ppid": 1, "cpu": 1.5, "ctime": 867, "elapsed": 6650, "timestamp": 864000000}
        }]

    def test_unknown_code_is_ignored(self, dispatcher, open_transport, stat_collector, profiler, snapshot_exporter):
        dispatcher.handle_frame('{"type": 999, "body": {"durationMs": 1}}', open_transport)

        assert open_transport.sent == []
        assert stat_collector.calls == []
        assert profiler.started == 0
        assert snapshot_exporter.calls == 0
        assert not dispatcher.profiler_lock.held
        assert open_transport.is_open

    def test_report_codes_are_ignored(self, dispatcher, open_transport, stat_collector):
        dispatcher.dispatch(Packet(CommandCode.REPORT_SERVER_STAT, {}), open_transport)
        assert stat_collector.calls == []
        assert open_transport.sent == []

    def test_malformed_frame_is_dropped_and_next_frame_handled(self, dispatcher, open_transport):
        dispatcher.handle_frame('{"type": ', open_transport)
        dispatcher.handle_frame('{"body": {}}', open_transport)
        dispatcher.handle_frame(encode(CommandCode.EXEC_SERVER_STAT), open_transport)

        assert [packet["type"] for packet in sent_packets(open_transport)] == [101]
        assert open_transport.is_open

    def test_request_on_closed_connection_is_skipped(self, dispatcher, open_transport, stat_collector):
        open_transport.go_half_open()

        dispatcher.dispatch(Packet(CommandCode.EXEC_SERVER_STAT), open_transport)

        assert stat_collector.calls == []
        assert open_transport.close_calls == 1
        assert open_transport.state == ConnectionState.DISCONNECTED

    def test_request_without_handle_is_skipped(self, dispatcher, stat_collector):
        dispatcher.dispatch(Packet(CommandCode.EXEC_SERVER_STAT), None)
        assert stat_collector.calls == []


class TestStatHandler:
    """Test process stat reports."""

    def test_collector_failure_sends_nothing(self, dispatcher, open_transport, stat_collector):
        stat_collector.error = CollaboratorError("No maching pid found")

        dispatcher.dispatch(Packet(CommandCode.EXEC_SERVER_STAT), open_transport)

        assert open_transport.sent == []
        assert open_transport.is_open

    def test_result_for_closed_connection_is_discarded(self, config, scheduler, manual_runner,
                                                       stat_collector, profiler, snapshot_exporter,
                                                       open_transport):
        dispatcher = CommandDispatcher(config, scheduler, manual_runner, stat_collector, profiler, snapshot_exporter)
        dispatcher.dispatch(Packet(CommandCode.EXEC_SERVER_STAT), open_transport)
        open_transport.go_half_open()

        manual_runner.run_pending()

        assert open_transport.sent == []
        assert open_transport.close_calls == 1
        assert open_transport.state == ConnectionState.DISCONNECTED

    def test_report_stat_without_request(self, dispatcher, open_transport):
        dispatcher.report_stat(open_transport)
        assert sent_packets(open_transport)[0]["type"] == 101


class TestHeapSnapshotHandler:
    """Test heap snapshot reports."""

    def test_snapshot_is_reported_as_text(self, dispatcher, open_transport, snapshot_exporter):
        dispatcher.handle_frame('{"type": 300}', open_transport)

        assert snapshot_exporter.calls == 1
        assert sent_packets(open_transport) == [{"type": 301, "body": {"data": '{"top": []}'}}]

    def test_export_failure_sends_nothing(self, dispatcher, open_transport, snapshot_exporter):
        snapshot_exporter.error = CollaboratorError("out of memory")

        dispatcher.handle_frame('{"type": 300}', open_transport)

        assert open_transport.sent == []

    def test_snapshots_are_not_exclusive(self, config, scheduler, manual_runner, stat_collector,
                                         profiler, snapshot_exporter, open_transport):
        dispatcher = CommandDispatcher(config, scheduler, manual_runner, stat_collector, profiler, snapshot_exporter)
        dispatcher.handle_frame('{"type": 300}', open_transport)
        dispatcher.handle_frame('{"type": 300}', open_transport)

        assert manual_runner.run_pending() == 2
        assert snapshot_exporter.calls == 2
        assert len(open_transport.sent) == 2


class TestCpuProfilerHandler:
    """Test the exclusive CPU profiler handler."""

    def test_profiler_session_end_to_end(self, dispatcher, scheduler, open_transport, profiler):
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 5000}}', open_transport)

        assert profiler.started == 1
        assert dispatcher.profiler_lock.held

        scheduler.advance(4.5)
        assert profiler.stopped == 0
        assert open_transport.sent == []

        scheduler.advance(0.5)
        assert profiler.stopped == 1
        assert not dispatcher.profiler_lock.held
        assert sent_packets(open_transport) == [{
            "type": 201,
            "body": {"topExecutingFunctions": [{"functionName": "consume", "selfTime": 120.0}], "longFunctions": []}
        }]
        assert scheduler.pending("cpu-profiler-lock-expiry") == []

    def test_second_request_is_dropped_not_queued(self, dispatcher, scheduler, open_transport, profiler):
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 5000}}', open_transport)
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)

        assert profiler.started == 1

        scheduler.advance(120.0)
        assert profiler.started == 1
        assert profiler.stopped == 1
        assert len(open_transport.sent) == 1

    def test_default_duration(self, dispatcher, scheduler, open_transport, profiler, config):
        dispatcher.handle_frame('{"type": 200}', open_transport)

        scheduler.advance(config.profiler_default_duration_ms / 1000.0 - 1)
        assert profiler.stopped == 0
        scheduler.advance(1)
        assert profiler.stopped == 1

    @pytest.mark.parametrize("body, expected", [
        (None, 100000),
        ({}, 100000),
        ({"durationMs": 5000}, 5000),
        ({"durationMs": 2500.7}, 2500),
        ({"durationMs": 10 ** 9}, 600000),
        ({"durationMs": -5}, 0),
        ({"durationMs": "soon"}, 100000),
        ({"durationMs": True}, 100000),
        ([1, 2], 100000),
    ])
    def test_resolve_duration(self, dispatcher, body, expected):
        assert dispatcher.cpu_profiler_handler.resolve_duration_ms(body) == expected

    def test_lock_expires_when_stop_never_completes(self, config, scheduler, manual_runner, stat_collector,
                                                    profiler, snapshot_exporter, open_transport):
        dispatcher = CommandDispatcher(config, scheduler, manual_runner, stat_collector, profiler, snapshot_exporter)
        lock = dispatcher.profiler_lock

        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 5000}}', open_transport)
        manual_runner.run_pending()
        assert profiler.started == 1

        # the stop job is queued but never runs
        scheduler.advance(5.0)
        manual_runner.jobs.clear()
        assert lock.held

        scheduler.advance(config.profiler_lock_window_ms / 1000.0 - 0.5)
        assert lock.held
        scheduler.advance(0.5)
        assert not lock.held

        profiler.active = False
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)
        manual_runner.run_pending()
        assert profiler.started == 2
        assert lock.held

    def test_stale_completion_does_not_free_newer_session(self, config, scheduler, manual_runner, stat_collector,
                                                          profiler, snapshot_exporter, open_transport):
        dispatcher = CommandDispatcher(config, scheduler, manual_runner, stat_collector, profiler, snapshot_exporter)
        lock = dispatcher.profiler_lock

        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)
        manual_runner.run_pending()
        scheduler.advance(1.0)
        stale_stop = manual_runner.jobs.pop()

        scheduler.advance(config.profiler_lock_window_ms / 1000.0)
        assert not lock.held

        profiler.active = False
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)
        manual_runner.run_pending()
        assert lock.held

        stale_stop[1]()

        assert lock.held
        assert profiler.stopped == 0
        assert open_transport.sent == []

    def test_start_failure_releases_lock(self, dispatcher, scheduler, open_transport, profiler):
        profiler.start_error = CollaboratorError("profiler busy")

        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)

        assert not dispatcher.profiler_lock.held
        assert scheduler.pending("cpu-profiler-stop") == []
        assert scheduler.pending("cpu-profiler-lock-expiry") == []
        assert open_transport.sent == []

    def test_stop_failure_releases_lock(self, dispatcher, scheduler, open_transport, profiler):
        profiler.stop_error = CollaboratorError("session lost")

        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)
        scheduler.advance(1.0)

        assert not dispatcher.profiler_lock.held
        assert open_transport.sent == []

    def test_result_discarded_when_connection_closed(self, dispatcher, scheduler, open_transport, profiler):
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)
        open_transport.drop()

        scheduler.advance(1.0)

        assert profiler.stopped == 1
        assert not dispatcher.profiler_lock.held
        assert open_transport.sent == []

    def test_profiler_lock_is_global_across_connections(self, dispatcher, scheduler, open_transport, profiler):
        from conftest import FakeTransport

        other = FakeTransport("http://127.0.0.1:8080", {}, {})
        other.open()

        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', other)

        assert profiler.started == 1

    def test_shutdown_cancels_running_session(self, dispatcher, scheduler, open_transport, profiler):
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 5000}}', open_transport)

        dispatcher.shutdown()

        assert profiler.stopped == 1
        assert not profiler.active
        assert not dispatcher.profiler_lock.held
        assert scheduler.pending("cpu-profiler-stop") == []
        assert scheduler.pending("cpu-profiler-lock-expiry") == []

        scheduler.advance(120.0)
        assert profiler.stopped == 1
        assert open_transport.sent == []

    def test_no_sessions_after_shutdown(self, dispatcher, open_transport, profiler):
        dispatcher.shutdown()

        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)

        assert profiler.started == 0
        assert not dispatcher.profiler_lock.held

    def test_shutdown_while_session_starts(self, config, scheduler, manual_runner, stat_collector,
                                           profiler, snapshot_exporter, open_transport):
        dispatcher = CommandDispatcher(config, scheduler, manual_runner, stat_collector, profiler, snapshot_exporter)
        dispatcher.handle_frame('{"type": 200, "body": {"durationMs": 1000}}', open_transport)

        dispatcher.shutdown()
        manual_runner.run_pending()

        assert profiler.started == 0
        assert not dispatcher.profiler_lock.held

    def test_shutdown_without_session(self, dispatcher, profiler):
        dispatcher.shutdown()
        assert profiler.stopped == 0
