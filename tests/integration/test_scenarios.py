"""
End-to-end scenarios over one store.

Tests cover:
- Salon onboarding: organization, owner, role and app, then introspection
- Concurrent upserts on one entity
- A product catalog with hierarchy, fields and a posted sale
"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from udb.udb_core.api.crud import UniversalApi
from udb.udb_core.errors import StaleVersionError
from udb.udb_core.schema.types import TransactionStatus
from udb.udb_core.store.universal_store import UniversalStore


class TestSalonOnboarding:
    """A salon owner is resolved to one organization with the ORG_OWNER role."""

    @pytest.mark.asyncio
    async def test_owner_introspection(self, api):
        org = (
            await api.organizations.create(
                {"organization_name": "Demo Salon", "organization_code": "DEMO-SALON"}
            )
        ).data
        role = await api.entities.crud(
            "CREATE",
            "system",
            org["id"],
            entity={
                "entity_type": "ROLE",
                "entity_name": "Organization owner",
                "smart_code": "HERA.SALON.ROLE.ORG_OWNER.v1",
            },
        )
        app = await api.entities.crud(
            "CREATE",
            "system",
            org["id"],
            entity={
                "entity_type": "APP",
                "entity_name": "Salon",
                "entity_code": "SALON",
                "smart_code": "HERA.CORE.APP.SALON.v1",
            },
        )
        user = await api.entities.crud(
            "CREATE",
            "system",
            org["id"],
            entity={
                "entity_type": "USER",
                "entity_name": "Salon owner",
                "entity_code": "salon@heraerp.com",
                "smart_code": "HERA.CORE.USER.ENTITY.v1",
            },
            relationships=[
                {
                    "to_entity_id": org["id"],
                    "relationship_type": "MEMBER_OF",
                    "smart_code": "HERA.CORE.USER.REL.MEMBER_OF.v1",
                },
                {
                    "to_entity_id": role.data["id"],
                    "relationship_type": "HAS_ROLE",
                    "smart_code": "HERA.CORE.USER.REL.HAS_ROLE.v1",
                    "relationship_data": {"organization_id": org["id"]},
                },
            ],
        )
        await api.relationships.crud(
            "CREATE",
            "system",
            org["id"],
            relationship={
                "from_entity_id": org["id"],
                "to_entity_id": app.data["id"],
                "relationship_type": "ORG_HAS_APP",
                "smart_code": "HERA.CORE.ORG.REL.HAS_APP.v1",
            },
        )

        result = await api.auth.introspect(user.data["id"])

        assert result.success
        assert result.data == {
            "actor_id": user.data["id"],
            "organizations": [
                {
                    "org_id": org["id"],
                    "org_name": "Demo Salon",
                    "org_code": "DEMO-SALON",
                    "role": "ORG_OWNER",
                    "roles": ["ORG_OWNER"],
                    "apps": [{"app_id": app.data["id"], "code": "SALON", "name": "Salon"}],
                }
            ],
        }


class TestConcurrentUpsert:
    """Two writers based on the same version: one wins, one is stale.

    Engine calls do not yield to the event loop while they hold a unit of
    work, so asyncio.gather runs the two upserts one after the other. The
    threaded test drives them from separate threads against the same file,
    where BEGIN IMMEDIATE is what serializes them.
    """

    @staticmethod
    async def _entity(api, code):
        org = await api.organization_engine.create_organization(name="Race", code=code)
        entity = await api.entity_engine.create_entity(
            org.id,
            {
                "entity_type": "customer",
                "entity_name": "Acme",
                "smart_code": "HERA.CRM.CUSTOMER.ENTITY.PROFILE.v1",
            },
        )
        return org, entity

    @staticmethod
    async def _assert_one_winner(api, org, entity, results):
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, StaleVersionError)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert winners[0].version == 2

        stored = await api.entity_engine.get_entity(org.id, entity.id)
        assert stored.entity_name == winners[0].entity_name
        assert stored.version == 2

    @pytest.mark.asyncio
    async def test_one_winner(self, api):
        org, entity = await self._entity(api, "RACE")

        results = await asyncio.gather(
            api.entity_engine.upsert_entity(
                org.id, {"id": entity.id, "entity_name": "Acme A", "version": 1}
            ),
            api.entity_engine.upsert_entity(
                org.id, {"id": entity.id, "entity_name": "Acme B", "version": 1}
            ),
            return_exceptions=True,
        )

        await self._assert_one_winner(api, org, entity, results)

    @pytest.mark.asyncio
    async def test_one_winner_across_threads(self, store, config):
        """Separate APIs on the same SQLite file race from two threads."""
        setup = UniversalApi(store, config)
        org, entity = await self._entity(setup, "RACE-T")
        barrier = threading.Barrier(2)

        def writer(name):
            api = UniversalApi(UniversalStore.from_config(config.storage), config)
            barrier.wait(timeout=5)
            try:
                return asyncio.run(
                    api.entity_engine.upsert_entity(
                        org.id, {"id": entity.id, "entity_name": name, "version": 1}
                    )
                )
            except StaleVersionError as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(writer, ["Acme A", "Acme B"]))

        await self._assert_one_winner(setup, org, entity, results)


class TestCatalogAndSale:
    """Categories, a product with fields, and a posted sale of it."""

    @pytest.mark.asyncio
    async def test_catalog_sale(self, api):
        org = await api.organization_engine.create_organization(name="Furniture", code="FURN")
        entities = api.entity_engine
        category_code = "HERA.FURNITURE.CATEGORY.ENTITY.v1"

        seating = await entities.create_entity(
            org.id, {"entity_type": "CATEGORY", "entity_name": "Seating", "smart_code": category_code}
        )
        chairs = await entities.create_entity(
            org.id,
            {"entity_type": "CATEGORY", "entity_name": "Chairs", "smart_code": category_code},
            relationships=[
                {
                    "from_entity_id": seating.id,
                    "relationship_type": "PARENT_OF",
                    "smart_code": "HERA.FURNITURE.CATEGORY.REL.PARENT.v1",
                }
            ],
        )
        chair = await entities.create_entity(
            org.id,
            {
                "entity_type": "PRODUCT",
                "entity_name": "Executive chair",
                "smart_code": "HERA.FURNITURE.PRODUCT.CHAIR.EXECUTIVE.v1",
            },
            {
                "price": {
                    "field_type": "number",
                    "value": "450.00",
                    "smart_code": "HERA.FURNITURE.PRODUCT.DYN.PRICE.v1",
                }
            },
        )
        for code in ("1100", "4000"):
            await entities.create_entity(
                org.id,
                {
                    "entity_type": "GL_ACCOUNT",
                    "entity_name": code,
                    "entity_code": code,
                    "smart_code": "HERA.FINANCE.GL.ACCOUNT.ENTITY.v1",
                },
            )

        tree = await api.relationship_engine.rollup(org.id, seating.id, "PARENT_OF")
        assert tree.descendant_ids() == [chairs.id]

        price = chair.dynamic_fields["price"].value.value
        sale = await api.transaction_engine.create_transaction(
            org.id,
            {
                "transaction_type": "SALE",
                "smart_code": "HERA.FURNITURE.POS.TXN.SALE.v1",
                "metadata": {"payment_method": "cash"},
            },
            [
                {
                    "line_type": "PRODUCT",
                    "entity_id": chair.id,
                    "quantity": 2,
                    "unit_amount": str(price),
                    "smart_code": "HERA.FURNITURE.POS.LINE.PRODUCT.v1",
                }
            ],
            auto_post_ledger=True,
        )

        assert sale.status is TransactionStatus.POSTED
        assert sale.total_amount == Decimal("900.00")
        sides = {l.side.value: l.line_amount for l in sale.lines if l.side is not None}
        assert sides == {"DR": Decimal("900.00"), "CR": Decimal("900.00")}
