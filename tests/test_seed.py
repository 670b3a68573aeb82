from datetime import date

from finance_tracker import crud, models
from finance_tracker.seed import DEMO_USERS, seed


def test_seed_creates_demo_accounts_once(db_session):
    users = seed(db_session)
    assert {u.email: u.role for u in users} == {
        "admin@demo.com": "admin",
        "user@demo.com": "user",
        "readonly@demo.com": "read-only",
    }

    again = seed(db_session)
    assert [u.id for u in again] == [u.id for u in users]
    assert db_session.query(models.User).count() == len(DEMO_USERS)


def test_seed_demo_passwords_work(db_session):
    seed(db_session)
    for _, email, password, _ in DEMO_USERS:
        assert crud.authenticate(db_session, email, password).email == email


def test_seed_with_transactions(db_session):
    seed(db_session, with_transactions=True, today=date(2024, 3, 15))
    admin = crud.get_user_by_email(db_session, "admin@demo.com")
    items, total = crud.list_transactions(db_session, admin.id, page_size=50)
    assert total == 5
    assert {t.date for t in items} == {date(2024, 3, 1)}

    # re-seeding does not duplicate sample data
    seed(db_session, with_transactions=True)
    assert db_session.query(models.Transaction).count() == 12
