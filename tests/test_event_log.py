"""
Event Log Tests
Records, dedupe window, spans, status line and filtering with a frozen clock.
"""

import logging

import pytest

from pricewatch.observability.event_log import EventLog, Level, LogFilter


class TestRecords:

    def test_write_assigns_sequence_and_defaults(self, event_log, clock):
        first = event_log.info("hello")
        second = event_log.warn("careful", {"source": "NET", "symbol": "BTCUSDT"})

        assert (first.id, second.id) == (1, 2)
        assert first.source == "App"
        assert first.timestamp == int(clock.time() * 1000)
        assert second.level is Level.WARN
        assert second.source == "NET"
        assert second.symbol == "BTCUSDT"
        assert event_log.known_sources == {"App", "NET"}
        assert event_log.known_symbols == {"BTCUSDT"}

    def test_unknown_level_falls_back_to_info(self, event_log):
        rec = event_log.write("verbose", "x")
        assert rec.level is Level.INFO

    @pytest.mark.parametrize("level", [Level.ERROR, "ERROR", " error "])
    def test_level_members_and_names_parse(self, event_log, level):
        assert event_log.write(level, "x").level is Level.ERROR

    def test_error_helper_and_failed_span_are_error(self, event_log):
        assert event_log.error("boom").level is Level.ERROR
        assert event_log.warn("careful").level is Level.WARN
        assert event_log.begin("network", "Req").end(False).level is Level.ERROR

    def test_capacity_evicts_oldest(self, clock):
        log = EventLog(capacity=3, clock=clock)
        for i in range(5):
            log.info(f"m{i}")

        assert len(log) == 3
        assert [r.message for r in log.records] == ["m2", "m3", "m4"]

    def test_records_are_immutable(self, event_log):
        rec = event_log.info("x", {"a": 1})
        with pytest.raises(TypeError):
            rec.metadata["a"] = 2

    def test_clear_resets_sequence(self, event_log):
        event_log.info("a")
        event_log.info("b")
        event_log.clear()

        assert len(event_log) == 0
        assert event_log.info("c").id == 1

    def test_event_merges_type_and_action(self, event_log):
        rec = event_log.event(type="calc", action="error")
        assert rec.message == "calc.error"
        assert rec.level is Level.ERROR
        assert rec.type == "calc"
        assert rec.action == "error"

    def test_records_mirrored_to_stdlib_logger(self, event_log, caplog):
        with caplog.at_level(logging.INFO, logger="pricewatch.events"):
            event_log.error("HTTP 500", {"source": "NET"})

        mirrored = [r for r in caplog.records if r.name == "pricewatch.events"]
        assert mirrored[-1].levelno == logging.ERROR
        assert mirrored[-1].source == "NET"


class TestDedupe:

    def test_suppresses_within_ttl(self, event_log, clock):
        assert event_log.dedupe("http-500-/api/v3/klines", 10000) is False
        assert event_log.dedupe("http-500-/api/v3/klines", 10000) is True

        clock.advance(9.9)
        assert event_log.dedupe("http-500-/api/v3/klines", 10000) is True

    def test_expires_after_ttl(self, event_log, clock):
        event_log.dedupe("k", 10000)
        clock.advance(10.0)
        assert event_log.dedupe("k", 10000) is False

    def test_keys_are_independent(self, event_log):
        event_log.dedupe("a")
        assert event_log.dedupe("b") is False


class TestSpans:

    def test_span_shares_correlation_and_duration(self, event_log, clock):
        span = event_log.begin("network", "Request /api/v3/klines", {"endpoint": "/api/v3/klines"})
        clock.advance(0.25)
        span.step("success", "Response received")
        clock.advance(0.05)
        done = span.end(True)

        start, step = event_log.records[0], event_log.records[1]
        assert start.action == "start"
        assert start.message == "Request /api/v3/klines"
        assert start.correlation_id == step.correlation_id == done.correlation_id == span.corr
        assert span.corr.startswith("network-")
        assert step.metadata["dur"] == 250
        assert done.metadata["dur"] == 300
        assert done.message == "Request /api/v3/klines done"

    def test_second_end_is_ignored(self, event_log):
        span = event_log.begin("refresh", "Refresh")
        span.end(True)
        assert span.end(False) is None
        assert len(event_log) == 2

    def test_failed_end_is_error(self, event_log):
        span = event_log.begin("refresh", "Refresh")
        rec = span.end(False, {"error": "boom"})
        assert rec.level is Level.ERROR
        assert rec.message == "Refresh failed"
        assert rec.metadata["error"] == "boom"

    def test_context_manager_records_exception(self, event_log):
        with pytest.raises(RuntimeError):
            with event_log.begin("calc", "Totals"):
                raise RuntimeError("see https://example.com/x")

        last = event_log.records[-1]
        assert last.action == "error"
        assert "https://" not in last.metadata["error"]

    def test_timer_logs_perf_event(self, event_log, clock):
        stop = event_log.timer("Render")
        clock.advance(0.042)
        assert stop() == 42
        assert event_log.records[-1].message == "Render: 42 ms"
        assert event_log.records[-1].type == "perf"


class TestStatusLine:

    def test_status_from_allowed_event_without_urls(self, event_log):
        event_log.event(type="refresh", action="start",
                        message="Refreshing https://api.binance.com/api/v3/ticker/price now")
        assert event_log.status == "INFO: Refreshing now"

    def test_status_is_clamped(self, clock):
        log = EventLog(clock=clock, status_width=48)
        log.event(type="ui", action="update", message="x" * 60)
        text = log.status.split(": ", 1)[1]
        assert len(text) == 48
        assert text.endswith("…")

    @pytest.mark.parametrize("kwargs", [
        {"type": "refresh", "action": "start", "level": "ERROR"},
        {"type": "perf", "action": "update"},
        {"type": "ui", "action": "error"},
        {"type": "ui", "action": "update", "meta": {"no_status": True}},
    ])
    def test_status_untouched(self, event_log, kwargs):
        event_log.set_status("INFO", "ready")
        event_log.event(message="ignored", **kwargs)
        assert event_log.status == "INFO: ready"

    def test_plain_info_does_not_touch_status(self, event_log):
        event_log.set_status("INFO", "ready")
        event_log.info("Favorite added: BTCUSDT")
        assert event_log.status == "INFO: ready"


class TestFiltering:

    @pytest.fixture
    def populated(self, event_log):
        event_log.info("Application loaded")
        event_log.error("HTTP 500", {"source": "NET", "endpoint": "/api/v3/klines"})
        event_log.info("Symbol changed", {"symbol": "ETHUSDT"})
        event_log.warn("Slow response", {"source": "NET"})
        return event_log

    def test_level_filter(self, populated):
        assert [r.message for r in populated.visible(LogFilter(level="error"))] == ["HTTP 500"]

    def test_query_matches_metadata(self, populated):
        assert [r.message for r in populated.visible(LogFilter(query="klines"))] == ["HTTP 500"]

    def test_source_and_symbol_filters(self, populated):
        assert len(populated.visible(LogFilter(source="NET"))) == 2
        assert [r.message for r in populated.visible(LogFilter(symbol="ETHUSDT"))] == ["Symbol changed"]

    def test_active_filter_does_not_mutate_store(self, populated):
        populated.set_level_filter("warn")
        assert len(populated.visible()) == 1
        assert len(populated.records) == 4

        populated.set_level_filter(None)
        assert len(populated.visible()) == 4

    def test_query_is_case_insensitive(self, populated):
        populated.set_query("  APPLICATION ")
        assert [r.message for r in populated.visible()] == ["Application loaded"]


class TestObservers:

    def test_subscribe_and_unsubscribe(self, event_log):
        seen = []
        unsubscribe = event_log.subscribe(lambda log: seen.append(len(log)))
        event_log.info("a")
        unsubscribe()
        event_log.info("b")
        assert seen == [1]

    def test_paused_keeps_records(self, event_log):
        seen = []
        event_log.subscribe(lambda log: seen.append(1))
        event_log.paused = True
        event_log.info("a")
        assert seen == []
        assert len(event_log) == 1

    def test_failing_listener_does_not_break_write(self, event_log):
        def boom(_):
            raise RuntimeError("listener")

        event_log.subscribe(boom)
        assert event_log.info("still written").id == 1
