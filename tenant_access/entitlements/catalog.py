"""
Plan catalog loader and seeder.

Loads config/plans.yml (plans, features, inclusions) and upserts it into
the plan tables. Seeding is idempotent: running it twice changes nothing,
and inclusions missing from the file are removed from the plan.

Usage:
    catalog = load_plan_catalog()
    seed_plan_catalog(db, catalog)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml
from sqlalchemy.orm import Session

from tenant_access.entitlements.cache import InvalidationPublisher
from tenant_access.entitlements.errors import UnknownFeatureError
from tenant_access.entitlements.resolver import EntitlementResolver
from tenant_access.errors import ConfigurationError
from tenant_access.models.plan import Feature, PlanFeature, SubscriptionPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureDefinition:
    flag: str
    label: str
    description: Optional[str] = None
    module: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class PlanDefinition:
    name: str
    label: str
    price_cents: int = 0
    sort_order: int = 0
    description: Optional[str] = None
    features: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlanCatalog:
    version: str
    features: List[FeatureDefinition]
    plans: List[PlanDefinition]

    def min_plan_for(self, flag: str) -> Optional[str]:
        """Cheapest plan (by sort_order) that includes flag."""
        for plan in sorted(self.plans, key=lambda p: p.sort_order):
            if flag in plan.features:
                return plan.name
        return None


def _default_catalog_path() -> Path:
    configured = os.getenv("PLAN_CATALOG_PATH")
    if configured:
        return Path(configured)
    candidates = [
        Path(__file__).parent.parent.parent / "config" / "plans.yml",
        Path(os.getcwd()) / "config" / "plans.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def parse_plan_catalog(raw: Dict[str, Any]) -> PlanCatalog:
    """Validate a decoded catalog document."""
    if not isinstance(raw, dict):
        raise ConfigurationError("Plan catalog must be a mapping")

    try:
        features = [
            FeatureDefinition(
                flag=item["flag"],
                label=item.get("label", item["flag"]),
                description=item.get("description"),
                module=item.get("module"),
                category=item.get("category"),
            )
            for item in raw.get("features", [])
        ]
        plans = [
            PlanDefinition(
                name=item["name"],
                label=item.get("label", item["name"].title()),
                price_cents=int(item.get("price_cents", 0)),
                sort_order=int(item.get("sort_order", 0)),
                description=item.get("description"),
                features=list(item.get("features", [])),
            )
            for item in raw.get("plans", [])
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid plan catalog: {e}") from e

    known = {f.flag for f in features}
    for plan in plans:
        for flag in plan.features:
            if flag not in known:
                raise UnknownFeatureError(flag)

    return PlanCatalog(version=str(raw.get("version", "0")), features=features, plans=plans)


def load_plan_catalog(path: Optional[Path] = None) -> PlanCatalog:
    """Read and validate the YAML catalog."""
    path = Path(path) if path else _default_catalog_path()
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Plan catalog not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Plan catalog is not valid YAML: {e}") from e

    catalog = parse_plan_catalog(raw)
    logger.info(
        "Plan catalog loaded",
        extra={"path": str(path), "version": catalog.version, "plans": len(catalog.plans)},
    )
    return catalog


def seed_plan_catalog(
    db: Session,
    catalog: PlanCatalog,
    resolver: Optional[EntitlementResolver] = None,
    publisher: Optional[InvalidationPublisher] = None,
) -> Dict[str, int]:
    """
    Upsert plans, features and inclusions. Returns change counts.

    After the commit, every flag whose inclusion changed in any plan is
    invalidated for all tenants, through the resolver when given, else
    through the publisher.
    """
    stats = {"features": 0, "plans": 0, "inclusions_added": 0, "inclusions_removed": 0}
    changed_feature_ids: Set[int] = set()

    features_by_flag: Dict[str, Feature] = {f.flag: f for f in db.query(Feature).all()}
    for definition in catalog.features:
        feature = features_by_flag.get(definition.flag)
        if feature is None:
            feature = Feature(flag=definition.flag)
            db.add(feature)
            features_by_flag[definition.flag] = feature
            stats["features"] += 1
        feature.label = definition.label
        feature.description = definition.description
        feature.module = definition.module
        feature.category = definition.category
        feature.min_plan = catalog.min_plan_for(definition.flag)
        feature.is_active = True
    db.flush()

    plans_by_name: Dict[str, SubscriptionPlan] = {p.name: p for p in db.query(SubscriptionPlan).all()}
    for definition in catalog.plans:
        plan = plans_by_name.get(definition.name)
        if plan is None:
            plan = SubscriptionPlan(name=definition.name)
            db.add(plan)
            plans_by_name[definition.name] = plan
            stats["plans"] += 1
        plan.label = definition.label
        plan.description = definition.description
        plan.price_cents = definition.price_cents
        plan.sort_order = definition.sort_order
        plan.is_active = True
        db.flush()

        wanted = {features_by_flag[flag].id for flag in definition.features}
        existing = {
            pf.feature_id: pf
            for pf in db.query(PlanFeature).filter(PlanFeature.plan_id == plan.id).all()
        }
        for feature_id in wanted - set(existing):
            db.add(PlanFeature(plan_id=plan.id, feature_id=feature_id))
            stats["inclusions_added"] += 1
            changed_feature_ids.add(feature_id)
        for feature_id in set(existing) - wanted:
            db.delete(existing[feature_id])
            stats["inclusions_removed"] += 1
            changed_feature_ids.add(feature_id)

    db.commit()

    flags_by_id = {f.id: flag for flag, f in features_by_flag.items()}
    for feature_id in sorted(changed_feature_ids):
        flag = flags_by_id[feature_id]
        if resolver is not None:
            resolver.invalidate_flag(flag, reason="plan_catalog_seeded")
        elif publisher is not None:
            publisher.publish(None, flag, "plan_catalog_seeded")

    logger.info("Plan catalog seeded", extra=stats)
    return stats
