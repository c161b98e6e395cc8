import pytest

from rankd.core import catalog
from rankd.core.errors import NotFoundError, ValidationError


def test_list_and_get_company(fake_db):
    fake_db.add_company("b", "Bravo")
    fake_db.add_company("a", "Alpha", services=["Removals"])
    fake_db.upsert_metadata(None, "a", total_reviews=10, scraped_reviews=4, calculated_avg=4.5, last_scraped=None)

    assert [c.name for c in catalog.list_companies()] == ["Alpha", "Bravo"]

    company, metadata = catalog.get_company("a")
    assert company.services == ["Removals"]
    assert metadata.to_dict() == {"totalReviews": 10, "scrapedReviews": 4, "calculatedAvg": 4.5, "lastScraped": None}
    assert catalog.get_company("b")[1] is None
    assert catalog.get_company("missing") is None


def test_update_company_validates_services(fake_db):
    fake_db.add_company("a", "Alpha")

    updated = catalog.update_company("a", {"services": ["Removals", "Mobile Storage", "Removals"]})
    assert updated.services == ["Removals", "Mobile Storage"]

    with pytest.raises(ValidationError):
        catalog.update_company("a", {"services": ["Catering"]})
    with pytest.raises(ValidationError):
        catalog.update_company("a", {"name": ""})
    with pytest.raises(NotFoundError):
        catalog.update_company("missing", {"name": "Nope"})


def test_update_company_can_clear_url(fake_db):
    fake_db.add_company("a", "Alpha", url="https://maps.example/a")
    assert catalog.update_company("a", {"url": None}).url is None


def test_our_company_is_a_single_setting(fake_db):
    fake_db.add_company("a", "Alpha")
    fake_db.add_company("b", "Bravo")

    assert catalog.get_our_company() is None
    catalog.set_our_company("a")
    catalog.set_our_company("b")

    assert catalog.get_our_company() == "b"
    assert [c.place_id for c in catalog.list_companies() if c.is_our_company] == ["b"]


def test_set_our_company_requires_known_company(fake_db):
    with pytest.raises(ValidationError):
        catalog.set_our_company("")
    with pytest.raises(NotFoundError):
        catalog.set_our_company("missing")


def test_group_lifecycle(fake_db):
    fake_db.add_company("a", "Alpha")
    group = catalog.create_group(" Rivals ", ["a", "x", "a"])

    assert group.name == "Rivals"
    assert group.company_ids == ["a", "x"]

    found, members = catalog.get_group(group.id)
    assert found.id == group.id
    assert [m.place_id for m in members] == ["a"]

    renamed = catalog.update_group(group.id, {"name": "Locals"})
    assert renamed.name == "Locals"
    assert renamed.company_ids == ["a", "x"]

    catalog.delete_group(group.id)
    assert catalog.get_group(group.id) is None
    with pytest.raises(NotFoundError):
        catalog.delete_group(group.id)


def test_groups_listed_newest_first(fake_db):
    first = catalog.create_group("First")
    second = catalog.create_group("Second")
    assert [g.id for g in catalog.list_groups()] == [second.id, first.id]


@pytest.mark.parametrize("name, members", [("", []), (None, []), ("ok", "a"), ("ok", [1])])
def test_create_group_validation(fake_db, name, members):
    with pytest.raises(ValidationError):
        catalog.create_group(name, members)


def test_update_unknown_group(fake_db):
    with pytest.raises(NotFoundError):
        catalog.update_group(7, {"name": "x"})
