"""
Record store primitives.

Verifies:
- id lookup, equality and predicate search
- partial updates and deletes by id
- per-collection locks are shared per table and re-entrant
- write-once models reject updates and deletes at flush
"""

import threading

import pytest

from authenticas.extensions import db
from authenticas.models import AuditEntry, Company, ImmutableRecordError, Retailer, Transaction
from authenticas.services import record_store
from authenticas.time_utils import utcnow

from conftest import make_retailer


class TestLookup:

    def test_find_by_id_and_missing(self, db_session):
        retailer = make_retailer("Lookup Mart")
        assert record_store.find_by_id(Retailer, retailer.id).name == "Lookup Mart"
        assert record_store.find_by_id(Retailer, retailer.id + 100) is None
        assert record_store.find_by_id(Retailer, None) is None

    def test_find_one_by_filters_and_criteria(self, db_session):
        make_retailer("Alpha")
        beta = make_retailer("Beta", is_active=False)

        assert record_store.find_one_by(Retailer, is_active=False).id == beta.id
        assert record_store.find_one_by(Retailer, Retailer.name.like("B%")).id == beta.id
        assert record_store.find_one_by(Retailer, name="Gamma") is None

    def test_find_all_by_orders_and_limits(self, db_session):
        for name in ("Charlie", "Alpha", "Bravo"):
            make_retailer(name)

        names = [r.name for r in record_store.find_all_by(Retailer, order_by=Retailer.name.asc())]
        assert names == ["Alpha", "Bravo", "Charlie"]

        page = record_store.find_all_by(Retailer, order_by=(Retailer.name.desc(),), limit=2, offset=1)
        assert [r.name for r in page] == ["Bravo", "Alpha"]

    def test_read_all_and_count(self, db_session):
        make_retailer("One")
        make_retailer("Two", is_active=False)
        assert len(record_store.read_all(Retailer)) == 2
        assert record_store.count_by(Retailer, is_active=True) == 1


class TestWrites:

    def test_append_assigns_id(self, db_session):
        now = utcnow()
        company = record_store.append(Company(name="New Co", api_key="ck_new", created_at=now, updated_at=now))
        assert company.id is not None
        db_session.expire_all()
        assert db.session.get(Company, company.id).name == "New Co"

    def test_update_by_id_partial(self, db_session):
        retailer = make_retailer("Old Name", webhook_url="https://old.test/hook")
        updated = record_store.update_by_id(Retailer, retailer.id, {"name": "New Name"})

        assert updated.name == "New Name"
        assert updated.webhook_url == "https://old.test/hook"

    def test_update_by_id_missing_returns_none(self, db_session):
        assert record_store.update_by_id(Retailer, 999, {"name": "x"}) is None

    def test_update_by_id_rejects_unknown_attribute(self, db_session):
        retailer = make_retailer("Strict")
        with pytest.raises(AttributeError):
            record_store.update_by_id(Retailer, retailer.id, {"nickname": "x"})

    def test_delete_by_id(self, db_session):
        retailer = make_retailer("Temporary")
        assert record_store.delete_by_id(Retailer, retailer.id) is True
        assert record_store.delete_by_id(Retailer, retailer.id) is False
        assert record_store.find_by_id(Retailer, retailer.id) is None

    def test_uncommitted_writes_roll_back_together(self, db_session):
        now = utcnow()
        record_store.append(Company(name="Pending", api_key="ck_pending", created_at=now, updated_at=now), commit=False)
        db_session.rollback()
        assert record_store.find_one_by(Company, name="Pending") is None


class TestCollectionLocks:

    def test_one_lock_per_collection(self):
        assert record_store.collection_lock(Retailer) is record_store.collection_lock(Retailer)
        assert record_store.collection_lock(Retailer) is not record_store.collection_lock(Company)

    def test_lock_is_reentrant(self):
        lock = record_store.collection_lock(Retailer)
        with lock:
            with lock:
                pass

    def test_lock_blocks_other_threads(self):
        lock = record_store.collection_lock(Company)
        acquired = []

        def _try():
            acquired.append(lock.acquire(timeout=0.05))

        with lock:
            worker = threading.Thread(target=_try)
            worker.start()
            worker.join()
        assert acquired == [False]

    def test_hold_collections_acquires_all(self):
        with record_store.hold_collections(Transaction, Retailer):
            for model in (Transaction, Retailer):
                result = []
                worker = threading.Thread(
                    target=lambda m=model: result.append(record_store.collection_lock(m).acquire(timeout=0.05))
                )
                worker.start()
                worker.join()
                assert result == [False]


class TestWriteOnceRecords:

    def _transaction(self):
        return record_store.append(Transaction(
            user_id=1, company_id=1, retailer_id=1, amount_cents=500,
            status="denied", denial_reason="user_not_found", timestamp=utcnow(),
            balance_before_cents=0, balance_after_cents=0,
        ))

    def test_transaction_update_rejected(self, db_session):
        transaction = self._transaction()
        with pytest.raises(ImmutableRecordError):
            record_store.update_by_id(Transaction, transaction.id, {"amount_cents": 1})
        db_session.rollback()
        assert record_store.find_by_id(Transaction, transaction.id).amount_cents == 500

    def test_transaction_delete_rejected(self, db_session):
        transaction = self._transaction()
        with pytest.raises(ImmutableRecordError):
            record_store.delete_by_id(Transaction, transaction.id)
        db_session.rollback()

    def test_audit_entry_update_rejected(self, db_session):
        entry = record_store.append(AuditEntry(
            timestamp=utcnow(), action="auth.login", performed_by="1",
            target_type="user", target_id="1",
        ))
        with pytest.raises(ImmutableRecordError):
            record_store.update_by_id(AuditEntry, entry.id, {"action": "auth.logout"})
        db_session.rollback()
