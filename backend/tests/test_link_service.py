"""
Link registry tests.

Verifies:
- create/deactivate/recreate keeps a single row per pair (same id)
- duplicate active links are rejected
- linking never edits retailer or company rows
- active link listings per retailer and per company
"""

import pytest

from authenticas.models import CompanyRetailerLink
from authenticas.services import audit_service, link_service, record_store
from authenticas.validation import ConflictError, NotFoundError

from conftest import make_company


class TestCreateAndDeactivate:

    def test_create_link(self, company, retailer_a):
        assert link_service.is_linked(company.id, retailer_a.id) is False

        link, created = link_service.create_link(company.id, retailer_a.id, "1")

        assert created is True
        assert link.status == "active"
        assert link_service.is_linked(company.id, retailer_a.id) is True

    def test_create_requires_existing_parties(self, company, retailer_a):
        with pytest.raises(NotFoundError):
            link_service.create_link(company.id + 50, retailer_a.id, "1")
        with pytest.raises(NotFoundError):
            link_service.create_link(company.id, retailer_a.id + 50, "1")

    def test_duplicate_active_link_rejected(self, company, retailer_a):
        link_service.create_link(company.id, retailer_a.id, "1")
        with pytest.raises(ConflictError):
            link_service.create_link(company.id, retailer_a.id, "1")
        assert record_store.count_by(CompanyRetailerLink) == 1

    def test_deactivate_flips_status(self, company, retailer_a):
        link, _ = link_service.create_link(company.id, retailer_a.id, "1")

        assert link_service.deactivate_link(company.id, retailer_a.id) is True
        assert link_service.is_linked(company.id, retailer_a.id) is False
        assert record_store.find_by_id(CompanyRetailerLink, link.id).status == "inactive"

    def test_deactivate_without_active_link_is_noop(self, company, retailer_a):
        assert link_service.deactivate_link(company.id, retailer_a.id) is False

        link_service.create_link(company.id, retailer_a.id, "1")
        link_service.deactivate_link(company.id, retailer_a.id)
        assert link_service.deactivate_link(company.id, retailer_a.id) is False

    def test_recreate_reactivates_same_row(self, company, retailer_a):
        original, _ = link_service.create_link(company.id, retailer_a.id, "1")
        original_id = original.id
        link_service.deactivate_link(company.id, retailer_a.id)

        again, created = link_service.create_link(company.id, retailer_a.id, "1")

        assert created is False
        assert again.id == original_id
        assert again.status == "active"
        assert record_store.count_by(CompanyRetailerLink) == 1

    def test_linking_leaves_parties_untouched(self, company, retailer_a):
        company_before = company.to_dict()
        retailer_before = retailer_a.to_dict()

        link_service.create_link(company.id, retailer_a.id, "1")
        link_service.deactivate_link(company.id, retailer_a.id)

        assert company.to_dict() == company_before
        assert retailer_a.to_dict() == retailer_before

    def test_create_and_unlink_are_audited(self, company, retailer_a):
        link, _ = link_service.create_link(company.id, retailer_a.id, "7")
        link_service.unlink(company.id, retailer_a.id, "7")

        actions = [e.action for e in audit_service.entries_for_target("link", link.id)]
        assert actions == ["company.retailer.unlinked", "company.retailer.linked"]

    def test_unlink_without_active_link(self, company, retailer_a):
        with pytest.raises(NotFoundError):
            link_service.unlink(company.id, retailer_a.id, "7")


class TestListings:

    def test_active_links_per_party(self, company, retailer_a, retailer_b):
        other = make_company("Other Co")
        link_service.create_link(company.id, retailer_a.id, "1")
        link_service.create_link(company.id, retailer_b.id, "1")
        link_service.create_link(other.id, retailer_a.id, "1")
        link_service.deactivate_link(company.id, retailer_b.id)

        assert [l.retailer_id for l in link_service.active_links_for_company(company.id)] == [retailer_a.id]
        assert {l.company_id for l in link_service.active_links_for_retailer(retailer_a.id)} == {company.id, other.id}
        assert link_service.active_links_for_retailer(retailer_b.id) == []

    def test_linked_companies_and_retailers(self, company, retailer_a, retailer_b):
        link_service.create_link(company.id, retailer_a.id, "1")
        link_service.create_link(company.id, retailer_b.id, "1")

        assert [r.name for r in link_service.linked_retailers(company.id)] == ["Retailer A", "Retailer B"]
        assert [c.name for c in link_service.linked_companies(retailer_a.id)] == ["Acme"]

    def test_list_links_filters(self, company, retailer_a, retailer_b):
        link_service.create_link(company.id, retailer_a.id, "1")
        link_service.create_link(company.id, retailer_b.id, "1")
        link_service.deactivate_link(company.id, retailer_a.id)

        assert len(link_service.list_links()) == 2
        assert len(link_service.list_links(active_only=True)) == 1
        assert len(link_service.list_links(retailer_id=retailer_a.id)) == 1
