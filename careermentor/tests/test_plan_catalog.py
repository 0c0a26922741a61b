"""
Plan catalog: price id resolution and tier credit lookups.
"""
import pytest

from careermentor.core.errors import UnknownPlanError
from careermentor.features.plans.catalog import PlanCatalog, load_plan_catalog
from careermentor.models.entitlement import Role
from careermentor.models.plan import PlanEntry
from careermentor.tests.helpers import PRO_PRICE, PREMIUM_PRICE


def test_resolves_pro_price(catalog):
    entry = catalog.resolve_plan(PRO_PRICE)
    assert entry.tier == Role.PRO
    assert entry.credit_allotment == 10


def test_resolves_premium_price_as_unlimited(catalog):
    entry = catalog.resolve_plan(PREMIUM_PRICE)
    assert entry.tier == Role.PREMIUM
    assert entry.credit_allotment == -1


@pytest.mark.parametrize("price_id", ["price_unknown", "", None, "prod_123"])
def test_unknown_price_is_an_error(catalog, price_id):
    with pytest.raises(UnknownPlanError) as exc:
        catalog.resolve_plan(price_id)
    assert exc.value.code == "unknown_plan"


def test_credits_for_tier(catalog):
    assert catalog.credits_for_tier(Role.FREE) == 1
    assert catalog.credits_for_tier(Role.PRO) == 10
    assert catalog.credits_for_tier(Role.PREMIUM) == -1
    assert catalog.free_credits == 1


def test_catalog_is_read_only(catalog):
    with pytest.raises(TypeError):
        catalog.entries["price_new"] = PlanEntry(price_id="price_new", tier=Role.PRO, credit_allotment=5)


def test_free_tier_is_not_purchasable():
    with pytest.raises(ValueError):
        PlanCatalog([PlanEntry(price_id="price_free", tier=Role.FREE, credit_allotment=1)], free_credits=1)


def test_price_id_format():
    assert PlanCatalog.is_valid_price_id(PRO_PRICE)
    assert PlanCatalog.is_valid_price_id("price_anything")
    assert not PlanCatalog.is_valid_price_id("price_")
    assert not PlanCatalog.is_valid_price_id("prod_123")
    assert not PlanCatalog.is_valid_price_id("")
    assert not PlanCatalog.is_valid_price_id(None)


def test_catalog_follows_settings_overrides():
    class Cfg:
        STRIPE_PRICE_PRO = "price_pro_alt"
        STRIPE_PRICE_PREMIUM = "price_premium_alt"
        PRO_ANALYSIS_CREDITS = 25
        PREMIUM_ANALYSIS_CREDITS = -1
        FREE_ANALYSIS_CREDITS = 2

    catalog = load_plan_catalog(Cfg())
    assert catalog.resolve_plan("price_pro_alt").credit_allotment == 25
    assert catalog.free_credits == 2
    with pytest.raises(UnknownPlanError):
        catalog.resolve_plan(PRO_PRICE)
