"""
Tests for the dual-confirmation gate.
"""
from signal_fakes import bullish_assessment
from src.vnsignal.signals.classifier import SignalClassifier
from src.vnsignal.signals.gating import evaluate_dual_confirmation


def _buy_signal(scenario_a):
    series, ratios = scenario_a
    return SignalClassifier().classify(series, ratios)


def test_all_checks_pass(scenario_a):
    signal = _buy_signal(scenario_a)
    result = evaluate_dual_confirmation(signal, bullish_assessment(), current_price=134.0)

    assert result.confirmed
    assert result.direction == "BUY"
    assert result.target_price == 150.0
    assert result.failed_checks == []


def test_missing_assessment_downgrades_to_watch(scenario_a):
    result = evaluate_dual_confirmation(_buy_signal(scenario_a), None, current_price=134.0)

    assert not result.confirmed
    assert result.direction == "WATCH"
    assert "no narrative assessment available" in result.failed_checks
    assert "no target price derivable" in result.failed_checks


def test_bearish_narrative_fails(scenario_a):
    assessment = bullish_assessment(short_term_signal="WATCH")
    result = evaluate_dual_confirmation(_buy_signal(scenario_a), assessment, 134.0)
    assert result.direction == "WATCH"
    assert len(result.failed_checks) == 1


def test_strong_scores_cannot_override_missing_target(scenario_a):
    assessment = bullish_assessment(target_price=None)
    result = evaluate_dual_confirmation(_buy_signal(scenario_a), assessment, 134.0)
    assert result.direction == "WATCH"
    assert result.failed_checks == ["no target price derivable"]


def test_target_must_exceed_current_price(scenario_a):
    assessment = bullish_assessment(target_price=130.0)
    result = evaluate_dual_confirmation(_buy_signal(scenario_a), assessment, 134.0)
    assert not result.confirmed


def test_combined_score_threshold(scenario_a):
    signal = _buy_signal(scenario_a)  # combined (81.25 + 90) / 2 = 85.6
    result = evaluate_dual_confirmation(
        signal, bullish_assessment(), 134.0, min_combined_score=90
    )
    assert not result.confirmed
    assert result.failed_checks[0].startswith("combined score")


def test_non_buy_signal_is_never_confirmed(scenario_a):
    signal = _buy_signal(scenario_a).model_copy(update={"direction": "HOLD"})
    result = evaluate_dual_confirmation(signal, bullish_assessment(), 134.0)
    assert result.direction == "WATCH"
