"""Tests for two-tier alias memory: lookup, confirmation, promotion and order-line resolution."""

from sqlalchemy import select

from conftest import CUSTOMER_PHONE, ORG_ID
from database.models import CustomerAlias, ProductAlias
from managers.alias_engine import (
    learn_aliases_from_items,
    record_alias_confirmation,
    resolve_alias_for_text,
    resolve_order_lines,
    run_alias_confirmation,
)

OTHER_PHONE = "919000000002"


async def _customer_rows(sessionmaker, phone=CUSTOMER_PHONE):
    async with sessionmaker() as s:
        return (await s.execute(select(CustomerAlias).where(CustomerAlias.customer_phone == phone))).scalars().all()


async def _global_rows(sessionmaker):
    async with sessionmaker() as s:
        return (await s.execute(select(ProductAlias))).scalars().all()


class TestRecordAliasConfirmation:
    async def test_first_confirmation_creates_customer_row(self, session, sessionmaker, catalog):
        res = await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "Noodles", catalog["maggi_masala"])
        assert res.customer_count == 1
        assert res.promoted is False

        rows = await _customer_rows(sessionmaker)
        assert [(r.wrong_text, r.canonical_product_id, r.occurrence_count) for r in rows] == [
            ("noodles", catalog["maggi_masala"], 1)
        ]
        assert await _global_rows(sessionmaker) == []

    async def test_promoted_at_threshold_not_before(self, session, sessionmaker, catalog):
        pid = catalog["maggi_masala"]
        first = await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", pid)
        second = await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "Noodles!", pid)
        assert (first.promoted, second.promoted) == (False, False)
        assert await _global_rows(sessionmaker) == []

        third = await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "NOODLES", pid)
        assert third.customer_count == 3
        assert third.promoted is True
        assert third.global_count == 1

    async def test_global_count_keeps_growing_after_promotion(self, session, sessionmaker, catalog):
        pid = catalog["maggi_masala"]
        for _ in range(5):
            res = await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", pid)
        assert res.customer_count == 5
        assert res.global_count == 3

        (row,) = await _global_rows(sessionmaker)
        assert row.occurrence_count == 3
        assert row.canonical_product_id == pid

    async def test_custom_threshold(self, session, catalog):
        res = await record_alias_confirmation(
            session, ORG_ID, CUSTOMER_PHONE, "noodles", catalog["maggi_masala"], promote_threshold=1
        )
        assert res.promoted is True

    async def test_latest_confirmation_wins_product(self, session, sessionmaker, catalog):
        await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", catalog["maggi_masala"])
        await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", catalog["indomie_masala"])
        (row,) = await _customer_rows(sessionmaker)
        assert row.canonical_product_id == catalog["indomie_masala"]
        assert row.occurrence_count == 2

    async def test_without_phone_is_a_no_op(self, session, sessionmaker, catalog):
        assert await record_alias_confirmation(session, ORG_ID, None, "noodles", catalog["maggi_masala"]) is None
        assert await record_alias_confirmation(session, ORG_ID, "  ", "noodles", catalog["maggi_masala"]) is None
        async with sessionmaker() as s:
            assert (await s.execute(select(CustomerAlias))).scalars().all() == []

    async def test_blank_text_is_a_no_op(self, session, catalog):
        assert await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "  !! ", catalog["maggi_masala"]) is None


class TestResolveAliasForText:
    async def test_unknown_text(self, session, catalog):
        assert await resolve_alias_for_text(session, ORG_ID, CUSTOMER_PHONE, "noodles") is None

    async def test_customer_memory_beats_global(self, session, catalog):
        # another customer teaches the org that "noodles" means Indomie
        for _ in range(4):
            await record_alias_confirmation(session, ORG_ID, OTHER_PHONE, "noodles", catalog["indomie_masala"])
        await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", catalog["maggi_masala"])

        mine = await resolve_alias_for_text(session, ORG_ID, CUSTOMER_PHONE, "Noodles")
        assert (mine.scope, mine.product_id, mine.occurrence_count) == ("customer", catalog["maggi_masala"], 1)

    async def test_falls_back_to_global(self, session, catalog):
        for _ in range(3):
            await record_alias_confirmation(session, ORG_ID, OTHER_PHONE, "noodles", catalog["indomie_masala"])

        hit = await resolve_alias_for_text(session, ORG_ID, CUSTOMER_PHONE, "noodles")
        assert (hit.scope, hit.product_id) == ("global", catalog["indomie_masala"])

        anonymous = await resolve_alias_for_text(session, ORG_ID, None, "noodles")
        assert anonymous.scope == "global"

    async def test_other_org_is_isolated(self, session, catalog):
        for _ in range(3):
            await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", catalog["maggi_masala"])
        assert await resolve_alias_for_text(session, "org-2", CUSTOMER_PHONE, "noodles") is None


class TestLearnAliasesFromItems:
    async def test_near_match_is_learned(self, session, sessionmaker, catalog):
        learned = await learn_aliases_from_items(
            session, ORG_ID, CUSTOMER_PHONE, "paneer biriyani",
            [{"canonical": "Paneer Biryani", "product_id": catalog["paneer_biryani"]}],
        )
        assert learned == 1
        (row,) = await _customer_rows(sessionmaker)
        assert row.wrong_text == "paneerbiriyani"

    async def test_exact_match_and_unrelated_are_skipped(self, session, sessionmaker, catalog):
        learned = await learn_aliases_from_items(
            session, ORG_ID, CUSTOMER_PHONE, "noodles",
            [
                {"canonical": "Noodles", "product_id": catalog["maggi_masala"]},
                {"canonical": "Toothpaste", "product_id": "p-x"},
                {"canonical": "Noodle", "product_id": None},
            ],
        )
        assert learned == 0
        assert await _customer_rows(sessionmaker) == []

    async def test_short_text_has_no_signal(self, session, catalog):
        learned = await learn_aliases_from_items(
            session, ORG_ID, CUSTOMER_PHONE, "pb", [{"canonical": "PB", "product_id": "p-x"}]
        )
        assert learned == 0


class TestResolveOrderLines:
    async def test_hydrates_from_alias_without_overwriting(self, session, catalog):
        await record_alias_confirmation(session, ORG_ID, CUSTOMER_PHONE, "noodles", catalog["maggi_masala"])

        items = [
            {"name": "noodles", "qty": 2, "unit": "box"},
            {"name": "paneer biryani", "brand": "House", "variant": "Regular"},
            {"name": "chips"},
        ]
        out = await resolve_order_lines(session, ORG_ID, CUSTOMER_PHONE, items)

        assert out.resolved == [0]
        assert out.needs_clarification == [2]
        line = out.items[0]
        assert line["product_id"] == catalog["maggi_masala"]
        assert (line["canonical"], line["brand"], line["variant"]) == ("Noodles", "Maggi", "Masala 70g")
        # parser-supplied unit is kept
        assert line["unit"] == "box"
        # input untouched
        assert "product_id" not in items[0]

    async def test_nothing_known(self, session, catalog):
        out = await resolve_order_lines(session, ORG_ID, CUSTOMER_PHONE, [{"name": "noodles"}])
        assert out.resolved == []
        assert out.needs_clarification == [0]


async def test_background_runner_uses_its_own_session(sessionmaker, catalog):
    res = await run_alias_confirmation(
        sessionmaker,
        org_id=ORG_ID,
        customer_phone=CUSTOMER_PHONE,
        wrong_text="noodles",
        product_id=catalog["maggi_masala"],
    )
    assert res.customer_count == 1
    assert len(await _customer_rows(sessionmaker)) == 1


async def test_background_runner_swallows_errors():
    def broken_sessionmaker():
        raise RuntimeError("pool exhausted")

    assert await run_alias_confirmation(broken_sessionmaker, org_id=ORG_ID, customer_phone=CUSTOMER_PHONE,
                                        wrong_text="noodles", product_id="p") is None
