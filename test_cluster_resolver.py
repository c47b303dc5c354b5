"""Tests for the cluster resolver, view builder and lock key derivation."""

from datetime import datetime, timedelta

import pytest

from services.cluster_resolver import resolve_cluster
from services.contact_store import ContactRecord, attribute_lock_keys, cluster_lock_keys, cluster_roots
from services.errors import EmptyCluster
from services.view_builder import build_consolidated_view

T0 = datetime(2024, 1, 1)


def contact(id, email=None, phone=None, linked_id=None, age=None):
    return ContactRecord(
        id=id,
        email=email,
        phone_number=phone,
        link_precedence="secondary" if linked_id else "primary",
        linked_id=linked_id,
        created_at=T0 + timedelta(minutes=id if age is None else age),
    )


class TestResolveCluster:
    def test_single_primary_survives(self):
        primary = contact(1, "a@x.com", "111")
        resolution = resolve_cluster([primary], [primary], "a@x.com", "111")

        assert resolution.surviving_primary == primary
        assert resolution.demote == ()
        assert not resolution.has_new_information

    def test_oldest_primary_survives(self):
        older = contact(7, email="a@x.com", age=1)
        newer = contact(3, phone="222", age=5)

        resolution = resolve_cluster([newer, older], [newer, older], "a@x.com", "222")

        assert resolution.surviving_primary == older
        assert resolution.demote == (newer,)

    def test_created_at_tie_broken_by_id(self):
        first = contact(4, email="a@x.com", age=0)
        second = contact(2, phone="222", age=0)

        resolution = resolve_cluster([first, second], [first, second], "a@x.com", "222")

        assert resolution.surviving_primary.id == 2
        assert [c.id for c in resolution.demote] == [4]

    def test_demotions_are_oldest_first(self):
        primaries = [contact(3, "c@x.com"), contact(1, "a@x.com"), contact(2, "b@x.com")]
        resolution = resolve_cluster(primaries, primaries, "a@x.com", None)

        assert [c.id for c in resolution.demote] == [2, 3]

    def test_secondaries_in_primaries_argument_are_ignored(self):
        primary = contact(1, "a@x.com")
        secondary = contact(2, "b@x.com", linked_id=1)

        resolution = resolve_cluster([secondary], [primary, secondary], "b@x.com", None)

        assert resolution.surviving_primary == primary
        assert resolution.demote == ()

    @pytest.mark.parametrize("email, phone, new_email, new_phone", [
        ("a@x.com", "111", False, False),
        ("a@x.com", "999", False, True),
        ("z@x.com", "111", True, False),
        ("a@x.com", None, False, False),
        (None, "999", False, True),
    ])
    def test_new_information_flags(self, email, phone, new_email, new_phone):
        matched = [contact(1, "a@x.com", "111")]

        resolution = resolve_cluster(matched, matched, email, phone)

        assert resolution.has_new_email is new_email
        assert resolution.has_new_phone is new_phone

    def test_no_primaries_is_an_internal_error(self):
        secondary = contact(2, "b@x.com", linked_id=1)
        with pytest.raises(EmptyCluster):
            resolve_cluster([secondary], [], "b@x.com", None)


class TestBuildConsolidatedView:
    def test_singleton(self):
        view = build_consolidated_view([contact(1, "a@x.com")])
        assert view.model_dump() == {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": [],
            "secondaryContactIds": [],
        }

    def test_primary_values_first_then_by_age(self):
        cluster = [
            contact(4, "d@x.com", "444", linked_id=2, age=1),
            contact(2, "b@x.com", "222", age=2),
            contact(3, "c@x.com", "222", linked_id=2, age=3),
            contact(5, "b@x.com", "555", linked_id=2, age=4),
        ]

        view = build_consolidated_view(cluster)

        assert view.primaryContactId == 2
        assert view.emails == ["b@x.com", "d@x.com", "c@x.com"]
        assert view.phoneNumbers == ["222", "444", "555"]
        assert view.secondaryContactIds == [4, 3, 5]

    def test_primary_without_email(self):
        cluster = [contact(1, phone="111"), contact(2, "b@x.com", "111", linked_id=1)]

        view = build_consolidated_view(cluster)

        assert view.emails == ["b@x.com"]
        assert view.phoneNumbers == ["111"]

    def test_empty_cluster(self):
        with pytest.raises(EmptyCluster):
            build_consolidated_view([])

    def test_cluster_with_two_primaries(self):
        with pytest.raises(EmptyCluster):
            build_consolidated_view([contact(1, "a@x.com"), contact(2, "b@x.com")])


class TestLockKeys:
    def test_attribute_keys_are_normalized_and_sorted(self):
        assert attribute_lock_keys(" A@X.com ", "+1 (234) 567") == ["email:a@x.com", "phone:+1234567"]
        assert attribute_lock_keys(None, "123-456") == ["phone:123456"]
        assert attribute_lock_keys("a@x.com", None) == ["email:a@x.com"]

    def test_cluster_keys_are_distinct_and_sorted(self):
        assert cluster_lock_keys([3, 1, 3]) == ["cluster:1", "cluster:3"]

    def test_cluster_roots(self):
        matched = [contact(1, "a@x.com"), contact(2, "b@x.com", linked_id=1), contact(5, "c@x.com", linked_id=4)]
        assert cluster_roots(matched) == [1, 4]
