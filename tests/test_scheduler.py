"""
test_scheduler.py - Tests for the settlement sweep driver
"""

from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from config import reload_settings
from models import FundStatus
from scheduler import run_settlement_sweep, start_settlement_scheduler
from services.funds import FundService
from services.savings import SavingsService

from conftest import T0


def test_sweep_matures_savings_and_closes_recruitment(economy):
    product = SavingsService.create_product(
        economy.scope_id, "Week", maturity_days=7, rate="0.1", cancellation_rate="0", max_amount=1000
    )
    SavingsService.join(economy.scope_id, economy.alice.id, product.id, 500, now=T0)
    fund = FundService.create_fund(
        economy.scope_id, economy.bob.id, "Trip", 10, 100,
        recruitment_deadline=T0 + timedelta(days=2), maturity_date=T0 + timedelta(days=5)
    )
    FundService.invest(economy.scope_id, fund.id, economy.bob.id, 3, now=T0)
    total_before = economy.total()

    summary = run_settlement_sweep(now=T0 + timedelta(days=7))

    assert summary.savings_matured == 1
    assert summary.funds_ongoing == 1
    assert summary.funds_due == 1
    assert economy.balance(economy.alice) == 1050
    assert FundService.get_fund(economy.scope_id, fund.id).status == FundStatus.ONGOING
    assert economy.total() == total_before

    # Nothing left to do on a second pass except the fund awaiting the teacher
    again = run_settlement_sweep(now=T0 + timedelta(days=7))
    assert again.savings_matured == 0
    assert again.funds_ongoing == 0
    assert again.funds_due == 1
    assert economy.balance(economy.alice) == 1050


def test_sweep_on_empty_database(db):
    summary = run_settlement_sweep(now=T0)
    assert summary.savings_matured == summary.funds_ongoing == summary.funds_due == 0


def test_scheduler_registers_interval_job(db, monkeypatch):
    monkeypatch.setenv("SWEEP_INTERVAL_MINUTES", "5")
    monkeypatch.setenv("SWEEP_ON_STARTUP", "false")
    reload_settings()

    scheduler = start_settlement_scheduler()
    try:
        assert isinstance(scheduler, BackgroundScheduler)
        job = scheduler.get_job("settlement_sweep")
        assert job is not None
        assert job.trigger.interval == timedelta(minutes=5)
    finally:
        scheduler.shutdown(wait=False)
