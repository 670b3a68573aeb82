import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from . import models, schemas
from .auth import dummy_verify, hash_password, verify_password
from .errors import AuthenticationError, ConflictError, NotFoundError
from .permissions import Role, is_admin
from .utils import escape_like, round_amount

logger = logging.getLogger(__name__)


# -------------------- Users --------------------

def get_user(db: Session, user_id: str) -> Optional[models.User]:
    return db.get(models.User, user_id)


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email.lower()).first()


def create_user(db: Session, user: schemas.UserCreate, role: Role = Role.USER) -> models.User:
    if get_user_by_email(db, user.email):
        raise ConflictError("User already exists")

    db_user = models.User(
        name=user.name,
        email=user.email.lower(),
        password_hash=hash_password(user.password),
        role=role.value,
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError as e:
        # lost a race with a concurrent registration for the same email
        db.rollback()
        raise ConflictError("User already exists") from e
    db.refresh(db_user)
    return db_user


def authenticate(db: Session, email: str, password: str) -> models.User:
    user = get_user_by_email(db, email)
    if user is None:
        dummy_verify()
        logger.info("login rejected: unknown account")
        raise AuthenticationError("Invalid credentials")
    if not verify_password(password, user.password_hash):
        logger.info("login rejected: bad password for user %s", user.id)
        raise AuthenticationError("Invalid credentials")
    return user


def list_users_with_counts(db: Session) -> List[Tuple[models.User, int]]:
    rows = (
        db.query(models.User, func.count(models.Transaction.id))
        .outerjoin(models.Transaction, models.Transaction.user_id == models.User.id)
        .group_by(models.User.id)
        .order_by(models.User.created_at.desc())
        .all()
    )
    return [(user, int(count)) for user, count in rows]


# -------------------- Transactions --------------------

def _search_filter(search: str):
    pattern = f"%{escape_like(search)}%"
    return or_(
        models.Transaction.description.ilike(pattern, escape="\\"),
        models.Transaction.category.ilike(pattern, escape="\\"),
    )


def list_transactions(
    db: Session, user_id: str, page: int = 1, page_size: int = 10, search: str = ""
) -> Tuple[List[models.Transaction], int]:
    """Return one page of the user's transactions and the size of the filtered set."""
    query = db.query(models.Transaction).filter(models.Transaction.user_id == user_id)
    search = (search or "").strip()
    if search:
        query = query.filter(_search_filter(search))

    total = query.count()
    items = (
        query.order_by(models.Transaction.date.desc(), models.Transaction.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return items, total


def get_transaction_for(db: Session, transaction_id: str, acting_user: models.User) -> models.Transaction:
    """Load a transaction the acting user may touch.

    Non-admins only see their own records; anything else is reported as
    missing so the existence of other users' records is not revealed.
    """
    query = db.query(models.Transaction).filter(models.Transaction.id == transaction_id)
    if not is_admin(acting_user.role):
        query = query.filter(models.Transaction.user_id == acting_user.id)
    transaction = query.first()
    if transaction is None:
        raise NotFoundError("Transaction not found")
    return transaction


def create_transaction(db: Session, owner_id: str, data: schemas.TransactionCreate) -> models.Transaction:
    db_tx = models.Transaction(
        user_id=owner_id,
        type=data.type,
        amount=round_amount(data.amount),
        description=data.description,
        category=data.category,
        date=data.date,
    )
    db.add(db_tx)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise NotFoundError("User not found") from e
    db.refresh(db_tx)
    return db_tx


def update_transaction(db: Session, transaction: models.Transaction, data: schemas.TransactionCreate) -> models.Transaction:
    transaction.type = data.type
    transaction.amount = round_amount(data.amount)
    transaction.description = data.description
    transaction.category = data.category
    transaction.date = data.date
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    return transaction


def delete_transaction(db: Session, transaction: models.Transaction) -> None:
    db.delete(transaction)
    db.commit()
