import pytest

from tokenecon import maths
from tokenecon.errors import InsufficientLiquidity, InvalidAmount, SlippageExceeded


def test_amount_out_with_fee():
    assert maths.get_amount_out(100, 1_000, 4_000, 30) == 362
    assert maths.get_amount_out(100, 1_000, 4_000, 0) == 363


def test_amount_in_covers_amount_out():
    assert maths.get_amount_in(362, 1_000, 4_000, 30) == 100
    needed = maths.get_amount_in(500, 10_000, 10_000, 30)
    assert maths.get_amount_out(needed, 10_000, 10_000, 30) >= 500


def test_amount_out_rejects_bad_inputs():
    with pytest.raises(InvalidAmount):
        maths.get_amount_out(0, 1_000, 1_000, 30)
    with pytest.raises(InsufficientLiquidity):
        maths.get_amount_out(10, 0, 1_000, 30)
    with pytest.raises(InsufficientLiquidity):
        maths.get_amount_in(1_000, 1_000, 1_000, 30)


def test_quote_and_optimal_amounts():
    assert maths.quote(100, 1_000, 4_000) == 400
    assert maths.optimal_amounts(100, 1_000, 1_000, 4_000, 0, 0) == (100, 400)
    assert maths.optimal_amounts(100, 100, 1_000, 4_000, 0, 0) == (25, 100)
    with pytest.raises(SlippageExceeded):
        maths.optimal_amounts(100, 100, 1_000, 4_000, 50, 0)
    with pytest.raises(SlippageExceeded):
        maths.optimal_amounts(100, 1_000, 1_000, 4_000, 0, 500)


def test_initial_and_proportional_shares():
    assert maths.initial_shares(1_000, 4_000, 1_000) == 2_000
    with pytest.raises(InsufficientLiquidity):
        maths.initial_shares(1_000, 1_000, 1_000)
    assert maths.proportional_shares(25, 100, 1_000, 4_000, 2_000) == 50
    assert maths.pro_rata(1_000, 1_100, 2_000) == 550
