"""
User history service.

Newest-first listings of a user's bets and wallet transactions so the
frontend can render authoritative logs straight from the server.
"""
from typing import List, Dict, Any

from sqlalchemy.orm import Session

from models import Bet, Round, Transaction


def get_user_transactions(user_id: int, db: Session, limit: int = 20) -> List[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(limit)
        .all()
    )


def get_user_bet_history(user_id: int, db: Session, limit: int = 20) -> List[Dict[str, Any]]:
    """
    Bets joined with their round so each entry shows the drawn color.

    Pending bets carry result None until their round is settled.
    """
    rows = (
        db.query(Bet, Round.round_number, Round.result)
        .join(Round, Bet.round_id == Round.id)
        .filter(Bet.user_id == user_id)
        .order_by(Bet.created_at.desc(), Bet.id.desc())
        .limit(limit)
        .all()
    )

    history: List[Dict[str, Any]] = []
    for bet, round_number, result in rows:
        history.append({
            "bet_id": bet.id,
            "round_id": bet.round_id,
            "round_number": round_number,
            "color": bet.color.value,
            "amount": bet.amount,
            "potential": bet.potential,
            "status": bet.status.value,
            "profit": bet.profit,
            # Outcome is hidden until the round has been settled.
            "result": result.value if result is not None and bet.profit is not None else None,
            "created_at": bet.created_at,
        })

    return history
