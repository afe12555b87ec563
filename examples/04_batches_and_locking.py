"""
Example 04: Batches, Transactions and Locking

This example pages through a table with a cursor, shows optimistic locking
rejecting a stale write, and takes a row lock inside a transaction.
"""

import sqlite3
import tempfile
from pathlib import Path

from row_orm import (
    Column,
    ConnectionConfig,
    Engine,
    Phase,
    Record,
    Session,
    StaleObjectError,
    configure_logging,
    hook,
)


class Account(Record):
    __table__ = "accounts"

    id = Column(int, primary_key=True)
    owner = Column(str, nullable=False)
    balance = Column(int, nullable=False, default=0)
    lock_version = Column(int)

    @hook(Phase.BEFORE_SAVE)
    def check_balance(self) -> None:
        if self.balance < 0:
            raise ValueError(f"{self.owner} would be overdrawn")


def main():
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    db_path = db_file.name
    db_file.close()

    conn = sqlite3.connect(db_path)
    conn.execute("""
        CREATE TABLE accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner TEXT NOT NULL,
            balance INTEGER NOT NULL DEFAULT 0,
            lock_version INTEGER
        )
    """)
    conn.close()

    # Stale writes are logged as warnings by the session
    configure_logging(level="WARNING")

    engine = Engine.from_config(ConnectionConfig(driver="sqlite", database=db_path))
    session = Session(engine)

    for i in range(1, 11):
        session.create(Account, owner=f"owner{i:02d}", balance=i * 100)

    print("=== Batches ===\n")
    for batch in session.query(Account).find_in_batches(4):
        print(f"   batch of {len(batch)}: {[a.owner for a in batch]}")

    print("\n   Bulk update page by page:")
    for page in session.query(Account).in_batches(of=5):
        print(f"   {page.update_all('balance = balance + ?', 1)} rows")

    print("\n=== Optimistic Locking ===\n")
    first = session.find(Account, 1)
    second = session.find(Account, 1)
    session.update(first, balance=first.balance + 50)
    print(f"   First write ok, lock_version={first.lock_version}")
    try:
        session.update(second, balance=second.balance - 50)
    except StaleObjectError as e:
        print(f"   Second write rejected: {e}")
    session.reload(second)
    session.update(second, balance=second.balance - 50)
    print(f"   Retried after reload, lock_version={second.lock_version}\n")

    print("=== Transactions and Row Locks ===\n")
    try:
        with session.transaction():
            payer = session.lock(session.find(Account, 2))
            payee = session.lock(session.find(Account, 3))
            payee.balance += 1000
            session.save(payee)
            payer.balance -= 1000
            session.save(payer)  # hook raises: both saves roll back
    except ValueError as e:
        print(f"   Transfer aborted: {e}")
    print(f"   Balance of owner03 unchanged: {session.find(Account, 3).balance}")

    engine.close()
    Path(db_path).unlink()


if __name__ == "__main__":
    main()
