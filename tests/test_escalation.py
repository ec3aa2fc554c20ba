"""
Tests for the windowed escalation counter.
"""
import pytest

from security.escalation import EscalationCounter


@pytest.mark.unit
class TestEscalationCounter:

    def test_escalates_at_threshold_and_clears(self, clock):
        counter = EscalationCounter(threshold=3, window_seconds=3600, clock=clock)
        assert not counter.hit("a")
        assert not counter.hit("a")
        assert counter.count("a") == 2
        assert counter.hit("a")
        assert counter.count("a") == 0
        assert len(counter) == 0

    def test_hits_outside_the_window_start_over(self, clock):
        counter = EscalationCounter(threshold=3, window_seconds=3600, clock=clock)
        counter.hit("a")
        counter.hit("a")
        clock.advance(3600)
        assert counter.count("a") == 0
        assert not counter.hit("a")
        assert counter.count("a") == 1

    def test_window_is_anchored_at_first_hit(self, clock):
        counter = EscalationCounter(threshold=3, window_seconds=60, clock=clock)
        counter.hit("a")
        clock.advance(50)
        counter.hit("a")
        clock.advance(10)
        assert not counter.hit("a")

    def test_keys_are_independent(self, clock):
        counter = EscalationCounter(threshold=2, window_seconds=60, clock=clock)
        assert not counter.hit("a")
        assert not counter.hit("b")
        assert counter.hit("a")
        assert counter.count("b") == 1

    def test_sweep_evicts_expired_records(self, clock):
        counter = EscalationCounter(threshold=3, window_seconds=60, clock=clock)
        for i in range(1000):
            counter.hit(f"10.0.{i // 256}.{i % 256}")
        clock.advance(30)
        counter.hit("fresh")
        clock.advance(30)

        assert counter.sweep() == 1000
        assert len(counter) == 1
        assert counter.count("fresh") == 1

    def test_reset(self, clock):
        counter = EscalationCounter(threshold=3, window_seconds=60, clock=clock)
        counter.hit("a")
        counter.reset("a")
        counter.reset("missing")
        assert counter.count("a") == 0

    @pytest.mark.parametrize("threshold, window", [(0, 60), (3, 0), (3, -1)])
    def test_rejects_invalid_configuration(self, threshold, window):
        with pytest.raises(ValueError):
            EscalationCounter(threshold=threshold, window_seconds=window)
