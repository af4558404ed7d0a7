import pytest

from cfspeedtest.stats import calc_stats, median


def test_single_value_collapses_everything():
    assert calc_stats([5.0]).as_tuple() == (5.0, 5.0, 5.0, 5.0, 5.0, 5.0)


def test_five_values():
    assert calc_stats([1.0, 2.0, 3.0, 4.0, 5.0]).as_tuple() == (1.0, 2.0, 3.0, 4.0, 5.0, 3.0)


def test_order_of_input_does_not_matter():
    assert calc_stats([5.0, 1.0, 3.0, 2.0, 4.0]) == calc_stats([1.0, 2.0, 3.0, 4.0, 5.0])


def test_same_sorted_input_gives_same_stats():
    values = [1.5, 2.0, 2.0, 7.25, 9.0, 11.0]
    first = calc_stats(values)

    assert calc_stats(values) == first
    assert values == [1.5, 2.0, 2.0, 7.25, 9.0, 11.0]


def test_two_values_use_min_and_max_as_quartiles():
    assert calc_stats([10.0, 20.0]).as_tuple() == (10.0, 10.0, 15.0, 20.0, 20.0, 15.0)


def test_three_values():
    assert calc_stats([3.0, 1.0, 2.0]).as_tuple() == (1.0, 1.0, 2.0, 3.0, 3.0, 2.0)


def test_even_length_splits_in_halves():
    summary = calc_stats([1.0, 2.0, 3.0, 4.0])
    assert (summary.q1, summary.median, summary.q3) == (1.5, 2.5, 3.5)


def test_odd_length_halves_share_the_median():
    # lower half [1, 2, 3, 4], upper half [4, 5, 6, 7]
    summary = calc_stats([1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0])
    assert (summary.q1, summary.median, summary.q3) == (2.5, 4.0, 5.5)


@pytest.mark.parametrize("values", [
    [0.5, 0.25, 800.0, 12.0, 12.0, 3.3],
    [1e-9, 1e9, 42.0, 42.0],
    [7.1] * 9,
    [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0, 1.1],
])
def test_summary_is_ordered(values):
    s = calc_stats(values)
    assert s.min <= s.q1 <= s.median <= s.q3 <= s.max
    assert s.min <= s.avg <= s.max


def test_avg_never_leaves_the_sample_range():
    assert calc_stats([0.1, 0.1, 0.1]).avg == 0.1


def test_empty_input_is_rejected():
    with pytest.raises(ValueError):
        calc_stats([])


def test_median():
    assert median([1.0, 2.0, 3.0]) == 2.0
    assert median([1.0, 2.0, 3.0, 4.0]) == 2.5
    assert median([5.0]) == 5.0
