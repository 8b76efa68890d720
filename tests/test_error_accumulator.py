"""
Tests for error accumulation and summary statistics.
"""

import math

import pytest

from map_evaluation.core.error_accumulator import CSV_HEADER, ErrorAccumulator, EvaluationSummary


def test_empty_accumulator_reports_zeros():
    summary = ErrorAccumulator().finalize()

    assert summary == EvaluationSummary(0.0, 0.0, 0.0, 0, 0, 0)


def test_three_values_statistics():
    """0.1, 0.3, 0.5: mean 0.3, sample std 0.2, rmse sqrt(0.35/3)."""
    accumulator = ErrorAccumulator()
    accumulator.add(0.1)
    accumulator.add(0.3)
    accumulator.add(0.5, truncated=True)

    summary = accumulator.finalize()

    assert summary.mean_error == pytest.approx(0.3)
    assert summary.std_error == pytest.approx(0.2)
    assert summary.rmse == pytest.approx(math.sqrt(0.35 / 3))
    assert summary.rmse == pytest.approx(0.3416, abs=1e-4)
    assert summary.total_points == 3
    assert summary.truncated_points == 1
    assert summary.unknown_points == 0


@pytest.mark.parametrize("values", [[0.4], [0.1, 0.9]])
def test_stddev_is_zero_for_two_or_fewer_values(values):
    accumulator = ErrorAccumulator()
    accumulator.add_many(values)

    summary = accumulator.finalize()

    assert summary.std_error == 0.0
    assert summary.mean_error == pytest.approx(sum(values) / len(values))


def test_unknown_points_count_toward_total_only():
    accumulator = ErrorAccumulator()
    accumulator.add(0.2)
    accumulator.add_unknown()
    accumulator.add_unknown()

    summary = accumulator.finalize()

    assert summary.total_points == 3
    assert summary.unknown_points == 2
    assert summary.mean_error == pytest.approx(0.2)


def test_large_offset_values_keep_precision():
    """Two-pass deviation sum does not cancel catastrophically."""
    accumulator = ErrorAccumulator()
    accumulator.add_many([1e8 + 1.0, 1e8 + 2.0, 1e8 + 3.0])

    assert accumulator.finalize().std_error == pytest.approx(1.0)


def test_negative_and_nan_values_rejected():
    accumulator = ErrorAccumulator()
    with pytest.raises(ValueError):
        accumulator.add(-0.1)
    with pytest.raises(ValueError):
        accumulator.add(float('nan'))
    assert len(accumulator) == 0


def test_summary_row_matches_header():
    summary = EvaluationSummary(0.3, 0.2, 0.34, 3, 0, 1)

    assert len(summary.to_row()) == len(CSV_HEADER)
    assert summary.to_dict()['truncated_points'] == 1
    with pytest.raises(AttributeError):
        summary.mean_error = 1.0
