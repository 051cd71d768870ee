"""Plan catalog loading and seeding."""

import pytest
from unittest.mock import MagicMock

from tenant_access.constants.features import FeatureFlag, PlanTier
from tenant_access.entitlements.catalog import (
    load_plan_catalog,
    parse_plan_catalog,
    seed_plan_catalog,
)
from tenant_access.entitlements.admin import SubscriptionManager
from tenant_access.entitlements.errors import UnknownFeatureError
from tenant_access.entitlements.resolver import EntitlementResolver
from tenant_access.entitlements.source import DatabaseEntitlementSource
from tenant_access.errors import ConfigurationError
from tenant_access.models.plan import Feature, PlanFeature, SubscriptionPlan


class TestLoadCatalog:

    def test_bundled_catalog_matches_known_flags(self, plan_catalog):
        assert {f.flag for f in plan_catalog.features} == {f.value for f in FeatureFlag}
        assert [p.name for p in plan_catalog.plans] == [t.value for t in PlanTier]

    def test_min_plan_for(self, plan_catalog):
        assert plan_catalog.min_plan_for("feature_tables") == "core"
        assert plan_catalog.min_plan_for("feature_couriers") == "standard"
        assert plan_catalog.min_plan_for("advanced_reports") == "enterprise"
        assert plan_catalog.min_plan_for("feature_teleport") is None

    def test_unknown_flag_in_plan(self):
        with pytest.raises(UnknownFeatureError):
            parse_plan_catalog({
                "features": [{"flag": "a"}],
                "plans": [{"name": "core", "features": ["a", "b"]}],
            })

    @pytest.mark.parametrize("raw", [
        [],
        {"features": [{"label": "no flag"}]},
        {"plans": [{"name": "core", "price_cents": "free"}]},
    ])
    def test_invalid_documents(self, raw):
        with pytest.raises(ConfigurationError):
            parse_plan_catalog(raw)

    def test_missing_file(self, temp_config_dir):
        with pytest.raises(ConfigurationError):
            load_plan_catalog(temp_config_dir / "nope.yml")

    def test_invalid_yaml(self, temp_config_dir):
        path = temp_config_dir / "plans.yml"
        path.write_text("plans: [unterminated")
        with pytest.raises(ConfigurationError):
            load_plan_catalog(path)

    def test_loads_custom_file(self, make_yaml_config):
        path = make_yaml_config("plans.yml", {
            "version": "2",
            "features": [{"flag": "a", "label": "A"}],
            "plans": [{"name": "solo", "features": ["a"]}],
        })
        catalog = load_plan_catalog(path)
        assert catalog.version == "2"
        assert catalog.plans[0].label == "Solo"


class TestSeedCatalog:

    def test_seed_is_idempotent(self, session_factory, plan_catalog):
        db = session_factory()
        try:
            first = seed_plan_catalog(db, plan_catalog)
            second = seed_plan_catalog(db, plan_catalog)

            assert first["plans"] == 3
            assert first["features"] == len(FeatureFlag)
            assert second == {"features": 0, "plans": 0, "inclusions_added": 0, "inclusions_removed": 0}
            assert db.query(PlanFeature).count() == 2 + 6 + 10
        finally:
            db.close()

    def test_seed_records_min_plan(self, seeded_factory):
        db = seeded_factory()
        try:
            feature = db.query(Feature).filter(Feature.flag == "feature_bcg_matrix").one()
            assert feature.min_plan == "standard"
        finally:
            db.close()

    def test_reseed_removes_dropped_inclusions(self, seeded_factory):
        db = seeded_factory()
        try:
            catalog = parse_plan_catalog({
                "features": [{"flag": "feature_tables"}, {"flag": "feature_delivery_zones"}],
                "plans": [{"name": "core", "features": ["feature_tables"]}],
            })
            stats = seed_plan_catalog(db, catalog)
            assert stats["inclusions_removed"] == 1

            core = db.query(SubscriptionPlan).filter(SubscriptionPlan.name == "core").one()
            flags = {
                row[0] for row in db.query(Feature.flag)
                .join(PlanFeature, PlanFeature.feature_id == Feature.id)
                .filter(PlanFeature.plan_id == core.id)
            }
            assert flags == {"feature_tables"}
        finally:
            db.close()

    @pytest.mark.asyncio
    async def test_reseed_invalidates_changed_flags(self, seeded_factory):
        resolver = EntitlementResolver(DatabaseEntitlementSource(seeded_factory))
        db = seeded_factory()
        try:
            SubscriptionManager(db).change_plan("rest-1", "core")
            assert await resolver.has_feature("rest-1", "feature_delivery_zones") is True
            assert await resolver.has_feature("rest-1", "feature_tables") is True

            catalog = parse_plan_catalog({
                "features": [{"flag": "feature_tables"}, {"flag": "feature_delivery_zones"}],
                "plans": [{"name": "core", "features": ["feature_tables"]}],
            })
            seed_plan_catalog(db, catalog, resolver=resolver)

            assert resolver.cache.peek("rest-1", "feature_delivery_zones") is None
            assert resolver.cache.peek("rest-1", "feature_tables") is True
            assert await resolver.has_feature("rest-1", "feature_delivery_zones") is False
        finally:
            db.close()

    def test_reseed_publishes_changed_flags(self, seeded_factory):
        publisher = MagicMock()
        db = seeded_factory()
        try:
            catalog = parse_plan_catalog({
                "features": [{"flag": "feature_tables"}, {"flag": "feature_delivery_zones"}],
                "plans": [{"name": "core", "features": ["feature_tables"]}],
            })
            seed_plan_catalog(db, catalog, publisher=publisher)
            publisher.publish.assert_called_once_with(None, "feature_delivery_zones", "plan_catalog_seeded")
        finally:
            db.close()

    def test_unchanged_reseed_publishes_nothing(self, seeded_factory, plan_catalog):
        publisher = MagicMock()
        db = seeded_factory()
        try:
            seed_plan_catalog(db, plan_catalog, publisher=publisher)
            publisher.publish.assert_not_called()
        finally:
            db.close()
