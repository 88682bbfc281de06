from __future__ import annotations

import pytest

from expensor.services.receipt_query import ReceiptQueryService

from factories import make_category, make_company, make_receipt, make_user


@pytest.mark.asyncio
async def test_facets_are_distinct_sorted_and_scoped_to_owner(db):
    me = await make_user(db, telegram_id=1)
    other = await make_user(db, telegram_id=2)
    travel = await make_category(db, "Travel", "✈")
    food = await make_category(db, "Food", "🍔")
    unused = await make_category(db, "Unused", "📦")
    zeta = await make_company(db, "Zeta")
    acme = await make_company(db, "Acme")
    secret = await make_company(db, "Secret Shop")

    await make_receipt(db, me, company=zeta, category=travel)
    await make_receipt(db, me, company=zeta, category=food)
    await make_receipt(db, me, company=acme, category=food)
    await make_receipt(db, me)  # nothing to contribute
    await make_receipt(db, other, company=secret, category=unused)

    options = await ReceiptQueryService().get_filter_options(db, 1)
    assert [c.name for c in options.categories] == ["Food", "Travel"]
    assert [c.name for c in options.companies] == ["Acme", "Zeta"]
    assert options.categories[0].icon == "🍔"


@pytest.mark.asyncio
async def test_facets_for_unknown_user_are_empty(db):
    options = await ReceiptQueryService().get_filter_options(db, 999)
    assert options.categories == []
    assert options.companies == []
