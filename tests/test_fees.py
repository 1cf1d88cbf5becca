"""Tests for the platform fee split."""

import pytest

from lostfound.services.fees import compute_fee_split, platform_fee_for


def test_split_for_fee_and_tip():
    split = compute_fee_split(500, 200)

    assert split.total == 700
    assert split.platform_fee == 70
    assert split.transfer_to_recipient == 630


@pytest.mark.parametrize(
    "total,expected_fee",
    [
        (0, 0),
        (4, 0),
        (5, 1),  # half rounds up
        (15, 2),
        (300, 30),
        (305, 31),
        (2000, 200),
        (2345, 235),
    ],
)
def test_platform_fee_rounds_half_up(total, expected_fee):
    assert platform_fee_for(total) == expected_fee


def test_split_always_sums_to_total():
    for fee in range(0, 2100, 7):
        for tip in (0, 1, 99, 250):
            split = compute_fee_split(fee, tip)
            assert split.platform_fee + split.transfer_to_recipient == split.total
            assert 0 <= split.platform_fee <= split.total


def test_split_is_deterministic():
    assert compute_fee_split(1234, 56) == compute_fee_split(1234, 56)


def test_negative_amounts_rejected():
    with pytest.raises(ValueError):
        compute_fee_split(-1)
    with pytest.raises(ValueError):
        compute_fee_split(500, -5)
