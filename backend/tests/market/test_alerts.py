"""Tests for AlertEvaluator."""

from pricewatch.market.alerts import AlertEvaluator, format_price
from pricewatch.market.models import (
    AlertCondition,
    AlertRule,
    Instrument,
    MarketKind,
    PriceObservation,
)


def _obs(price: float, pct: float = 0.0) -> PriceObservation:
    return PriceObservation(price=price, percent_change_24h=pct, observed_at=0.0)


def _btc(**rule) -> Instrument:
    return Instrument(ticker="BTC", market_kind=MarketKind.CRYPTO, alert=AlertRule(**rule))


class TestAlertEvaluator:
    """Unit tests for threshold matching and the cooldown window."""

    def test_disabled_rule_never_fires(self, clock):
        """A disabled rule is rejected before any threshold is looked at."""
        events = []
        evaluator = AlertEvaluator(sink=events.append, clock=clock)
        btc = _btc(enabled=False, above=1.0)
        assert evaluator.check(btc, btc.alert, _obs(50000.0)) is None
        assert events == []

    def test_above_fires(self, clock):
        """Price at or over the upper threshold fires."""
        events = []
        evaluator = AlertEvaluator(sink=events.append, clock=clock)
        btc = _btc(enabled=True, above=50000.0)

        event = evaluator.check(btc, btc.alert, _obs(50000.0))

        assert event is not None
        assert event.condition is AlertCondition.ABOVE
        assert event.instrument_id == btc.id
        assert event.message == "BTC above $50,000.00: now $50,000.00"
        assert events == [event]

    def test_below_fires(self, clock):
        evaluator = AlertEvaluator(clock=clock)
        btc = _btc(enabled=True, below=40000.0)
        event = evaluator.check(btc, btc.alert, _obs(39999.5))
        assert event.condition is AlertCondition.BELOW
        assert event.message == "BTC below $40,000.00: now $39,999.50"

    def test_percent_change_uses_absolute_value(self, clock):
        """A drop counts as much as a rise."""
        evaluator = AlertEvaluator(clock=clock)
        btc = _btc(enabled=True, percent_change=5.0)
        event = evaluator.check(btc, btc.alert, _obs(100.0, pct=-5.24))
        assert event.condition is AlertCondition.PERCENT_CHANGE
        assert event.message == "BTC down 5.2%"

    def test_no_match_leaves_no_record(self, clock):
        """Without a match nothing is recorded, so the next match fires at once."""
        evaluator = AlertEvaluator(clock=clock)
        btc = _btc(enabled=True, above=60000.0)

        assert evaluator.check(btc, btc.alert, _obs(50000.0)) is None
        assert evaluator.last_fired_at(btc.id) is None
        assert evaluator.check(btc, btc.alert, _obs(60000.0)) is not None

    def test_first_match_wins(self, clock):
        """Only one alert per evaluation, in above/below/percent order."""
        events = []
        evaluator = AlertEvaluator(sink=events.append, clock=clock)
        btc = _btc(enabled=True, above=100.0, below=200.0, percent_change=1.0)

        event = evaluator.check(btc, btc.alert, _obs(150.0, pct=10.0))

        assert event.condition is AlertCondition.ABOVE
        assert len(events) == 1

    def test_cooldown_blocks_every_condition(self, clock):
        """After firing, no condition fires again until the cooldown elapses."""
        events = []
        evaluator = AlertEvaluator(sink=events.append, cooldown=3600, clock=clock)
        btc = _btc(enabled=True, above=50000.0, below=40000.0, percent_change=5.0)

        evaluator.check(btc, btc.alert, _obs(51000.0))
        clock.advance(1800)
        assert evaluator.check(btc, btc.alert, _obs(39000.0)) is None
        clock.advance(1799)
        assert evaluator.check(btc, btc.alert, _obs(100.0, pct=-90.0)) is None

        clock.advance(1)
        event = evaluator.check(btc, btc.alert, _obs(39000.0))
        assert event is not None
        assert event.condition is AlertCondition.BELOW
        assert len(events) == 2

    def test_cooldown_is_per_instrument(self, clock):
        """One instrument's firing does not silence another."""
        evaluator = AlertEvaluator(clock=clock)
        btc = _btc(enabled=True, above=1.0)
        eth = Instrument(
            ticker="ETH", market_kind=MarketKind.CRYPTO, alert=AlertRule(enabled=True, above=1.0)
        )

        assert evaluator.check(btc, btc.alert, _obs(10.0)) is not None
        assert evaluator.check(eth, eth.alert, _obs(10.0)) is not None

    def test_set_cooldown_applies_to_next_evaluation(self, clock):
        """Shortening the cooldown takes effect immediately."""
        evaluator = AlertEvaluator(cooldown=3600, clock=clock)
        btc = _btc(enabled=True, above=1.0)
        evaluator.check(btc, btc.alert, _obs(10.0))

        clock.advance(400)
        assert evaluator.check(btc, btc.alert, _obs(10.0)) is None

        evaluator.set_cooldown(300)
        assert evaluator.cooldown == 300
        assert evaluator.check(btc, btc.alert, _obs(10.0)) is not None

    def test_last_fired_never_moves_backwards(self, clock):
        """A clock that steps back does not rewind the suppression record."""
        evaluator = AlertEvaluator(cooldown=0, clock=clock)
        btc = _btc(enabled=True, above=1.0)

        evaluator.check(btc, btc.alert, _obs(10.0))
        fired = evaluator.last_fired_at(btc.id)
        clock.advance(-100)
        evaluator.check(btc, btc.alert, _obs(10.0))

        assert evaluator.last_fired_at(btc.id) == fired

    def test_rule_read_at_evaluation_time(self, clock):
        """Edits to the registry's rule object are seen by the next check."""
        evaluator = AlertEvaluator(clock=clock)
        btc = _btc(enabled=False, above=1.0)
        assert evaluator.check(btc, btc.alert, _obs(10.0)) is None

        btc.alert.enabled = True
        assert evaluator.check(btc, btc.alert, _obs(10.0)) is not None


def test_format_price():
    assert format_price(1234567.891) == "$1,234,567.89"
