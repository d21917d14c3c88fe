"""
Tests for bet intake: validation order, debit, transaction snapshot, rejections.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from decimal import Decimal

import pytest

import core.bet_manager as bet_manager
import core.ledger as ledger
from core.bet_manager import BetManager
from core.exceptions import (
    ConcurrentUpdate,
    InsufficientBalance,
    InvalidColor,
    InvalidStake,
    RoundNotFound,
    RoundNotOpen,
    UserNotFound,
)
from core.ledger import LedgerManager
from core.round_manager import RoundManager
from core.settlement import close_round
from models import Bet, BetStatus, Color, Round, RoundStatus, Transaction, TransactionType
from services.history_service import get_user_transactions


def test_place_bet_debits_and_records(db, clock, make_user, open_round):
    """User with 1000 bets 100 on red: potential 200, balance 900, one bet transaction."""
    user = make_user(balance=1000)
    bet = BetManager.place_bet(db, user.id, open_round.id, "red", Decimal("100"), now=clock())

    assert bet.status == BetStatus.PENDING
    assert bet.color == Color.RED
    assert bet.potential == Decimal("200")
    assert bet.profit is None

    db.expire_all()
    assert LedgerManager.get_user(db, user.id).balance == Decimal("900")

    txs = get_user_transactions(user.id, db)
    assert txs[0].type == TransactionType.BET
    assert txs[0].amount == Decimal("-100")
    assert txs[0].balance_before == Decimal("1000")
    assert txs[0].balance_after == Decimal("900")
    assert txs[0].reference == f"Bet #{bet.id}"


def test_bet_after_end_time_rejected(db, clock, make_user, open_round):
    user = make_user(balance=1000)
    clock.advance(60)

    with pytest.raises(RoundNotOpen):
        BetManager.place_bet(db, user.id, open_round.id, "red", 10, now=clock())

    db.expire_all()
    assert LedgerManager.get_user(db, user.id).balance == Decimal("1000")
    assert db.query(Bet).count() == 0


def test_bet_one_second_before_end_accepted(db, clock, make_user, open_round):
    user = make_user()
    clock.advance(59)
    bet = BetManager.place_bet(db, user.id, open_round.id, "green", 10, now=clock())
    assert bet.id is not None


def test_insufficient_balance_rejected(db, clock, make_user, open_round):
    """Stake 500 against balance 100: rejected, no bet, no transaction."""
    user = make_user(balance=100)
    tx_before = db.query(Transaction).count()

    with pytest.raises(InsufficientBalance):
        BetManager.place_bet(db, user.id, open_round.id, "red", 500, now=clock())

    db.expire_all()
    assert LedgerManager.get_user(db, user.id).balance == Decimal("100")
    assert db.query(Bet).count() == 0
    assert db.query(Transaction).count() == tx_before


def test_stake_equal_to_balance_allowed(db, clock, make_user, open_round):
    user = make_user(balance=100)
    BetManager.place_bet(db, user.id, open_round.id, "violet", 100, now=clock())
    db.expire_all()
    assert LedgerManager.get_user(db, user.id).balance == Decimal("0")


@pytest.mark.parametrize("amount", [0, -5, "abc"])
def test_invalid_stake_rejected(db, clock, make_user, open_round, amount):
    user = make_user()
    with pytest.raises(InvalidStake):
        BetManager.place_bet(db, user.id, open_round.id, "red", amount, now=clock())


def test_below_minimum_stake_rejected(db, clock, make_user, open_round):
    user = make_user()
    with pytest.raises(InvalidStake, match="Minimum stake"):
        BetManager.place_bet(db, user.id, open_round.id, "red", Decimal("0.50"), now=clock())


def test_unknown_color_rejected(db, clock, make_user, open_round):
    user = make_user()
    with pytest.raises(InvalidColor):
        BetManager.place_bet(db, user.id, open_round.id, "blue", 10, now=clock())


def test_unknown_round_rejected(db, clock, make_user):
    user = make_user()
    with pytest.raises(RoundNotFound):
        BetManager.place_bet(db, user.id, 999, "red", 10, now=clock())


def test_round_state_checked_before_input(db, clock, make_user, open_round):
    """A closed round reports RoundNotOpen even when the input is also invalid."""
    user = make_user()
    clock.advance(120)
    with pytest.raises(RoundNotOpen):
        BetManager.place_bet(db, user.id, open_round.id, "blue", -1, now=clock())


def test_inactive_user_rejected(db, clock, make_user, open_round):
    user = make_user()
    LedgerManager.update_user(db, user.id, {"is_active": False})
    with pytest.raises(UserNotFound):
        BetManager.place_bet(db, user.id, open_round.id, "red", 10, now=clock())


def test_bet_rejected_once_outcome_recorded(db, clock, make_user, open_round, make_engine):
    user = make_user()
    clock.advance(60)
    make_engine("red").settle_round(open_round.id)

    with pytest.raises(RoundNotOpen):
        BetManager.place_bet(
            db, user.id, open_round.id, "red", 10, now=open_round.start_time + timedelta(seconds=1)
        )


def test_potential_fixed_at_intake(db, clock, make_user, open_round):
    """Forcing a different multiplier later does not change an existing bet's potential."""
    user = make_user()
    bet = BetManager.place_bet(db, user.id, open_round.id, "violet", 10, now=clock())
    RoundManager.force_result(db, open_round.id, "violet", Decimal("10"))

    db.expire_all()
    assert BetManager.get_bet(db, bet.id).potential == Decimal("40")


# ============ concurrency ============


class _CompeteAfterRead:
    """Wraps a lock query so a competing write runs right after the row is read."""

    def __init__(self, query, compete):
        self._query = query
        self._compete = compete

    def first(self):
        row = self._query.first()
        self._compete()
        return row


def _assert_transaction_chain(db, user_id):
    txs = db.query(Transaction).filter(Transaction.user_id == user_id).order_by(Transaction.id).all()
    for prev, tx in zip(txs, txs[1:]):
        assert tx.balance_before == prev.balance_after
    for tx in txs:
        assert tx.balance_after == tx.balance_before + tx.amount
        assert tx.balance_after >= 0
    return txs


def test_wager_racing_close_is_settled(monkeypatch, db, session_factory, make_user, open_round, make_engine):
    """Settlement that starts between the open check and the debit waits for the wager and settles it."""
    user = make_user(balance=1000)
    engine = make_engine("red")
    round_id, end = open_round.id, open_round.end_time
    settled, errors = [], []

    def settle():
        try:
            settled.append(engine.settle_round(round_id, now=end))
        except Exception as e:
            errors.append(e)

    settler = threading.Thread(target=settle)
    real_lock = bet_manager.with_user_lock

    def lock_after_settlement_started(user_id, session):
        settler.start()
        time.sleep(0.2)
        return real_lock(user_id, session)

    monkeypatch.setattr(bet_manager, "with_user_lock", lock_after_settlement_started)
    bet = BetManager.place_bet(db, user.id, round_id, "red", 100, now=end - timedelta(milliseconds=5))
    settler.join(10)

    assert not settler.is_alive()
    assert errors == []
    db.expire_all()
    round_obj = db.get(Round, round_id)
    assert round_obj.status == RoundStatus.SETTLED
    assert round_obj.bet_count == 1
    assert db.get(Bet, bet.id).status == BetStatus.WON
    assert settled[0].bets_won == 1
    assert LedgerManager.get_user(db, user.id).balance == Decimal("1100")


def test_wager_after_close_started_is_rejected(db, session_factory, make_user, open_round, make_engine):
    """Once the round is closing, a wager stamped before end is still refused and nothing is debited."""
    user = make_user(balance=1000)
    end = open_round.end_time

    closer = session_factory()
    try:
        close_round(closer, open_round.id, end)
    finally:
        closer.close()

    with pytest.raises(RoundNotOpen):
        BetManager.place_bet(db, user.id, open_round.id, "red", 100, now=end - timedelta(milliseconds=5))

    make_engine("red").settle_round(open_round.id, now=end)
    db.expire_all()
    assert db.query(Bet).count() == 0
    assert db.get(Round, open_round.id).bet_count == 0
    assert LedgerManager.get_user(db, user.id).balance == Decimal("1000")


def test_stale_user_row_raises_concurrent_update(monkeypatch, db, session_factory, make_user):
    """A balance write based on a stale version is refused with no partial effect."""
    user = make_user(balance=100)
    other = session_factory()
    real_lock = ledger.with_user_lock
    raced = []

    def racing_lock(user_id, session):
        query = real_lock(user_id, session)
        if raced:
            return query
        raced.append(True)
        return _CompeteAfterRead(
            query, lambda: LedgerManager.deposit(other, user_id, Decimal("50"))
        )

    monkeypatch.setattr(ledger, "with_user_lock", racing_lock)
    try:
        with pytest.raises(ConcurrentUpdate):
            LedgerManager.withdraw(db, user.id, Decimal("30"))
    finally:
        other.close()

    db.expire_all()
    assert LedgerManager.get_user(db, user.id).balance == Decimal("150")
    txs = _assert_transaction_chain(db, user.id)
    assert [tx.type for tx in txs] == [TransactionType.DEPOSIT, TransactionType.DEPOSIT]


def test_concurrent_bets_same_user_no_lost_update(db, session_factory, clock, make_user, open_round):
    """Eight threads race to stake 100 each from a balance of 500: exactly five succeed."""
    user_id, round_id, now = make_user(balance=500).id, open_round.id, clock()
    barrier = threading.Barrier(8)
    placed, rejected, unexpected = [], [], []

    def bet():
        session = session_factory()
        try:
            barrier.wait()
            placed.append(BetManager.place_bet(session, user_id, round_id, "green", 100, now=now).id)
        except InsufficientBalance as e:
            rejected.append(e)
        except Exception as e:
            unexpected.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=bet) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert unexpected == []
    assert len(placed) == 5
    assert len(rejected) == 3

    db.expire_all()
    assert LedgerManager.get_user(db, user_id).balance == Decimal("0")
    assert db.query(Bet).count() == 5
    assert db.get(Round, round_id).bet_count == 5
    txs = _assert_transaction_chain(db, user_id)
    assert len([tx for tx in txs if tx.type == TransactionType.BET]) == 5
