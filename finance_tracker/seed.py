"""
Seed demo data
- Creates the admin, user and read-only demo accounts if missing
- Optionally adds a few sample transactions for each of them

Usage:
  python -m finance_tracker.seed [--with-transactions]
"""
import argparse
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from . import crud, models, schemas
from .db import Base, SessionLocal, engine
from .permissions import Role

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("Admin User", "admin@demo.com", "admin123", Role.ADMIN),
    ("Regular User", "user@demo.com", "user123", Role.USER),
    ("Read Only User", "readonly@demo.com", "readonly123", Role.READ_ONLY),
]

SAMPLE_TRANSACTIONS = {
    "admin@demo.com": [
        ("income", "5000.00", "Monthly Salary", "Income"),
        ("expense", "1200.00", "Rent Payment", "Bills & Utilities"),
        ("expense", "300.00", "Groceries", "Food & Dining"),
        ("expense", "50.00", "Gas", "Transportation"),
        ("expense", "100.00", "Movie Night", "Entertainment"),
    ],
    "user@demo.com": [
        ("income", "3500.00", "Freelance Work", "Income"),
        ("expense", "800.00", "Rent", "Bills & Utilities"),
        ("expense", "200.00", "Groceries", "Food & Dining"),
        ("expense", "75.00", "Internet Bill", "Bills & Utilities"),
    ],
    "readonly@demo.com": [
        ("income", "2500.00", "Part-time Job", "Income"),
        ("expense", "600.00", "Rent", "Bills & Utilities"),
        ("expense", "150.00", "Groceries", "Food & Dining"),
    ],
}


def seed(db: Session, with_transactions: bool = False, today: date | None = None) -> list[models.User]:
    """Create missing demo users (and their sample transactions); returns the demo users."""
    today = today or date.today()
    users = []
    for name, email, password, role in DEMO_USERS:
        user = crud.get_user_by_email(db, email)
        created = user is None
        if created:
            user = crud.create_user(db, schemas.UserCreate(name=name, email=email, password=password), role=role)
            logger.info("created demo user %s", email)
        users.append(user)

        if with_transactions and created:
            for tx_type, amount, description, category in SAMPLE_TRANSACTIONS[email]:
                crud.create_transaction(
                    db,
                    user.id,
                    schemas.TransactionCreate(
                        type=tx_type,
                        amount=Decimal(amount),
                        description=description,
                        category=category,
                        date=today.replace(day=1),
                    ),
                )
    return users


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--with-transactions", action="store_true", help="Also add sample transactions")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        seed(db, with_transactions=args.with_transactions)


if __name__ == "__main__":
    main()
