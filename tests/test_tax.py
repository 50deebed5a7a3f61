import pytest

from retirement_engine.tax import (TaxBreakdown, capital_gains_tax, household_tax, irmaa_surcharge,
                                   ordinary_income_tax, taxable_social_security)


def test_ordinary_brackets():
    assert ordinary_income_tax(0) == 0.0
    assert ordinary_income_tax(11_600) == pytest.approx(1_160)
    assert ordinary_income_tax(50_000) == pytest.approx(1_160 + 4_266 + 627)
    assert ordinary_income_tax(23_200, 'married') == pytest.approx(2_320)


def test_brackets_are_indexed():
    assert ordinary_income_tax(23_200, 'single', index=2.0) == pytest.approx(2_320)


def test_capital_gains_stack_on_ordinary_income():
    assert capital_gains_tax(10_000, 40_000) == pytest.approx(2_975 * 0.15)
    assert capital_gains_tax(10_000, 0) == 0.0
    assert capital_gains_tax(-5, 0) == 0.0


def test_social_security_taxability():
    assert taxable_social_security(20_000, 10_000) == 0.0
    assert taxable_social_security(30_000, 30_000) == pytest.approx(13_850)
    assert taxable_social_security(30_000, 1_000_000) == pytest.approx(0.85 * 30_000)


def test_household_tax_low_income_is_zero():
    taxes = household_tax(ordinary_income=5_000, social_security=20_000, capital_gains=0)
    assert taxes.total == 0.0


def test_household_tax_components():
    taxes = household_tax(ordinary_income=80_000, social_security=0, capital_gains=20_000,
                          filing_status='single', state_rate=0.05)
    assert taxes.ordinary == pytest.approx(ordinary_income_tax(80_000 - 14_600))
    assert taxes.capital_gains > 0
    assert taxes.state == pytest.approx(0.05 * (80_000 - 14_600 + 20_000))
    assert taxes.total == pytest.approx(taxes.ordinary + taxes.capital_gains + taxes.state)


def test_breakdown_total():
    assert TaxBreakdown(1.0, 2.0, 3.0, 100.0, 500.0).total == 6.0


def test_magi_includes_gains_and_taxable_benefits():
    taxes = household_tax(ordinary_income=30_000, social_security=30_000, capital_gains=10_000)
    assert taxes.magi == pytest.approx(30_000 + 10_000 + taxes.taxable_social_security)


def test_irmaa_tiers():
    assert irmaa_surcharge(90_000) == 0.0
    assert irmaa_surcharge(103_000) == pytest.approx((244.60 - 174.70) * 12)
    assert irmaa_surcharge(150_000) == pytest.approx((349.40 - 174.70) * 12)
    assert irmaa_surcharge(2_000_000) == pytest.approx((594.00 - 174.70) * 12)
    assert irmaa_surcharge(150_000, 'married') == 0.0


def test_irmaa_thresholds_are_indexed():
    assert irmaa_surcharge(150_000, index=1.5) == 0.0
    assert irmaa_surcharge(160_000, index=1.5) == pytest.approx((244.60 - 174.70) * 1.5 * 12)
