"""
Tests for take-profit placement, slippage tiers, fees and PnL.
"""

import pytest

from range_backtest.backtest.pnl import PnLModel
from range_backtest.exceptions import SimulationError
from range_backtest.models import (
    CloseReason,
    CloseResult,
    TakeProfitKind,
    TakeProfitPolicy,
    Trade,
    TradeSide,
)
from range_backtest.validation import ValidationError

T0 = 1_757_030_400_000


def open_trade(side=TradeSide.LONG, entry_price=99.4):
    long = side is TradeSide.LONG
    return Trade(
        side=side,
        entry_timestamp=T0,
        entry_price=entry_price,
        stop_loss=99.0 if long else 101.0,
        take_profit=99.7479 if long else 100.2479,
        cycle_start=T0,
        cycle_end=T0 + 600_000,
        lower_bound=99.0,
        upper_bound=101.0,
        position=0.2,
        probability=0.9,
    )


@pytest.mark.unit
class TestTakeProfit:

    def test_fixed_percent_long(self):
        policy = TakeProfitPolicy(TakeProfitKind.FIXED_PERCENT, tp_percent=0.35)

        tp = PnLModel.take_profit(TradeSide.LONG, 99.4, 99.0, 101.0, policy)

        assert tp == pytest.approx(99.7479)

    def test_fixed_percent_short(self):
        policy = TakeProfitPolicy("fixed_percent", tp_percent=0.5)

        tp = PnLModel.take_profit(TradeSide.SHORT, 100.0, 99.0, 101.0, policy)

        assert tp == pytest.approx(99.5)

    def test_midpoint_targets_far_boundary(self):
        policy = TakeProfitPolicy("midpoint")

        assert PnLModel.take_profit(TradeSide.LONG, 99.4, 99.0, 101.0, policy) == pytest.approx(100.2)
        assert PnLModel.take_profit(TradeSide.SHORT, 100.6, 99.0, 101.0, policy) == pytest.approx(99.8)

    def test_fixed_risk_reward(self):
        policy = TakeProfitPolicy("fixed_rr", risk_reward=2)

        # Risk 0.4 from entry to the lower boundary
        assert PnLModel.take_profit(TradeSide.LONG, 99.4, 99.0, 101.0, policy) == pytest.approx(100.2)

    def test_stop_loss_on_band_edge(self):
        assert PnLModel.stop_loss(TradeSide.LONG, 99.0, 101.0) == 99.0
        assert PnLModel.stop_loss(TradeSide.SHORT, 99.0, 101.0) == 101.0

    def test_invalid_policy_values(self):
        with pytest.raises(ValidationError):
            TakeProfitPolicy("fixed_percent", tp_percent=0)
        with pytest.raises(ValueError):
            TakeProfitPolicy("trailing")


@pytest.mark.unit
class TestSlippage:

    @pytest.mark.parametrize("notional,expected", [
        (5_000, 0.0001),
        (10_000, 0.0001),
        (10_001, 0.0002),
        (75_000, 0.0003),
        (250_000, 0.0005),
    ])
    def test_tiers(self, pnl_model, notional, expected):
        assert pnl_model.slippage_rate(notional) == expected


@pytest.mark.unit
class TestFinalize:

    def test_take_profit_long(self, pnl_model):
        trade = open_trade().with_close(CloseResult(T0 + 120_000, 99.7479, CloseReason.TAKE_PROFIT))

        result = pnl_model.finalize(trade)

        assert result.position_size == pytest.approx(1.5)
        assert result.slippage == 0.0
        assert result.fill_price == 99.7479
        assert result.gross_pnl == pytest.approx((99.7479 - 99.4) * 1.5)
        assert result.entry_fee == pytest.approx(99.4 * 1.5 * 0.00045)
        assert result.exit_fee == pytest.approx(99.7479 * 1.5 * 0.00045)
        assert abs(result.net_pnl - (result.gross_pnl - (result.entry_fee + result.exit_fee))) < 1e-9
        assert result.won

    def test_stop_loss_long_slips_down(self, pnl_model):
        trade = open_trade().with_close(CloseResult(T0 + 60_000, 99.0, CloseReason.STOP_LOSS))

        result = pnl_model.finalize(trade)

        assert result.slippage == 0.0001
        assert result.fill_price == pytest.approx(99.0 * (1 - 0.0001))
        assert result.gross_pnl < (99.0 - 99.4) * 1.5
        assert not result.won

    def test_stop_loss_short_slips_up(self, pnl_model):
        trade = open_trade(TradeSide.SHORT, 100.6).with_close(
            CloseResult(T0 + 60_000, 101.0, CloseReason.STOP_LOSS)
        )

        result = pnl_model.finalize(trade)

        assert result.fill_price == pytest.approx(101.0 * 1.0001)
        assert result.gross_pnl == pytest.approx(-(result.fill_price - 100.6) * 1.5)

    def test_slippage_tier_uses_entry_notional(self):
        model = PnLModel(position_margin=10, leverage=50, taker_fee=0.0)
        trade = open_trade(entry_price=150.0).with_close(
            CloseResult(T0 + 60_000, 99.0, CloseReason.STOP_LOSS)
        )

        # 150 * 500 = 75,000 notional
        assert model.finalize(trade).slippage == 0.0003

    def test_open_trade_rejected(self, pnl_model):
        with pytest.raises(SimulationError):
            pnl_model.finalize(open_trade())

    def test_invalid_sizing(self):
        with pytest.raises(ValidationError):
            PnLModel(position_margin=0, leverage=3, taker_fee=0.00045)
