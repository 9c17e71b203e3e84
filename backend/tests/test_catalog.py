"""
Product catalog tests.

Verifies:
- Mode configuration rules (enabled => priced, disabled => zero price and stock)
- Every mutation appends exactly one audit entry, in order
- Soft delete via deactivate/reactivate
- The cached in-stock flag follows the per-mode counters
"""

import pytest

from blindbox.errors import InvalidConfigError, NotFoundError, ProductNotFoundError, UnauthorizedError, ValidationError
from blindbox.models.catalog import PRODUCT_STATUS_ACTIVE, PRODUCT_STATUS_INACTIVE
from blindbox.services import catalog_service, order_service
from blindbox.services.catalog_service import validate_product_config

from conftest import DEFAULT_PRODUCT


# =============================================================================
# CONFIGURATION RULES
# =============================================================================


class TestProductConfig:

    def test_defaults_are_valid(self):
        config = validate_product_config(**DEFAULT_PRODUCT)
        assert config["individual_price_wei"] == 100
        assert config["set_boxes"] == 6

    def test_at_least_one_mode_required(self):
        with pytest.raises(InvalidConfigError):
            validate_product_config(name="Nothing", enable_individual=False, enable_set=False)

    def test_enabled_mode_needs_price(self):
        with pytest.raises(InvalidConfigError):
            validate_product_config(name="Free box", enable_individual=True, individual_stock=5)

    def test_legacy_price_satisfies_enabled_mode(self):
        config = validate_product_config(name="Old box", enable_individual=True, individual_stock=5, price_wei=70)
        assert config["individual_price_wei"] == 0
        assert config["price_wei"] == 70

    def test_legacy_price_does_not_price_sets(self):
        with pytest.raises(InvalidConfigError):
            validate_product_config(
                name="Old set",
                enable_individual=False,
                enable_set=True,
                set_price_wei=0,
                set_stock=3,
                price_wei=100,
            )

    def test_add_product_rejects_unpriced_set(self, admin):
        with pytest.raises(InvalidConfigError):
            catalog_service.add_product(
                admin.address,
                name="Old set",
                enable_individual=False,
                enable_set=True,
                set_stock=3,
                price_wei=100,
            )
        assert catalog_service.list_products(include_inactive=True) == []

    @pytest.mark.parametrize("field", ["set_price_wei", "set_stock"])
    def test_disabled_mode_must_be_zeroed(self, field):
        with pytest.raises(InvalidConfigError):
            validate_product_config(
                name="Singles only",
                enable_individual=True,
                individual_price_wei=100,
                **{field: 1},
            )

    def test_negative_amount_rejected(self):
        with pytest.raises(InvalidConfigError):
            validate_product_config(**dict(DEFAULT_PRODUCT, individual_stock=-1))

    def test_non_integer_amount_rejected(self):
        with pytest.raises(InvalidConfigError):
            validate_product_config(**dict(DEFAULT_PRODUCT, set_price_wei="500"))

    def test_blank_name_rejected(self):
        with pytest.raises(InvalidConfigError):
            validate_product_config(**dict(DEFAULT_PRODUCT, name="   "))


# =============================================================================
# MUTATIONS AND AUDIT TRAIL
# =============================================================================


class TestCatalogMutations:

    def test_add_product_records_audit_entry(self, admin, product):
        assert product.status == PRODUCT_STATUS_ACTIVE
        assert product.in_stock

        trail = catalog_service.get_audit_trail(product.id)
        assert [e.entry_index for e in trail] == [0]
        assert trail[0].action == catalog_service.AUDIT_ACTION_ADD
        assert trail[0].actor_account_id == admin.id
        assert trail[0].data_hash == catalog_service.product_data_hash(product)

    def test_product_ids_are_sequential(self, make_product):
        first = make_product()
        second = make_product(name="Second series")
        assert second.id == first.id + 1

    def test_non_admin_cannot_add(self, buyer):
        with pytest.raises(UnauthorizedError):
            catalog_service.add_product(buyer.address, **DEFAULT_PRODUCT)
        assert catalog_service.list_products(include_inactive=True) == []

    def test_update_overwrites_and_appends_entry(self, admin, product):
        first_hash = catalog_service.get_audit_entry(product.id, 0).data_hash

        updated = catalog_service.update_product(
            admin.address, product.id, **dict(DEFAULT_PRODUCT, name="Renamed", set_stock=9),
        )
        assert updated.name == "Renamed"
        assert updated.set_stock == 9

        assert catalog_service.get_audit_count(product.id) == 2
        entry = catalog_service.get_audit_entry(product.id, 1)
        assert entry.action == catalog_service.AUDIT_ACTION_UPDATE
        assert entry.data_hash != first_hash

    def test_invalid_update_changes_nothing(self, admin, product):
        with pytest.raises(InvalidConfigError):
            catalog_service.update_product(
                admin.address, product.id, **dict(DEFAULT_PRODUCT, enable_individual=False, enable_set=False),
            )
        reloaded = catalog_service.get_product(product.id)
        assert reloaded.enable_individual and reloaded.enable_set
        assert catalog_service.get_audit_count(product.id) == 1

    def test_update_unknown_product(self, admin):
        with pytest.raises(ProductNotFoundError):
            catalog_service.update_product(admin.address, 9999, **DEFAULT_PRODUCT)

    def test_audit_entry_out_of_range(self, product):
        with pytest.raises(NotFoundError):
            catalog_service.get_audit_entry(product.id, 5)

    def test_deactivate_and_reactivate(self, admin, product):
        catalog_service.deactivate_product(admin.address, product.id)
        assert catalog_service.get_product(product.id).status == PRODUCT_STATUS_INACTIVE
        assert catalog_service.list_products() == []
        assert [p.id for p in catalog_service.list_products(include_inactive=True)] == [product.id]

        catalog_service.reactivate_product(admin.address, product.id)
        assert [p.id for p in catalog_service.list_products()] == [product.id]

        actions = [e.action for e in catalog_service.get_audit_trail(product.id)]
        assert actions == [
            catalog_service.AUDIT_ACTION_ADD,
            catalog_service.AUDIT_ACTION_DEACTIVATE,
            catalog_service.AUDIT_ACTION_REACTIVATE,
        ]


# =============================================================================
# STOCK FLAG AND PRICING
# =============================================================================


class TestStockAndPrice:

    def test_in_stock_when_any_enabled_mode_has_stock(self, make_product):
        product = make_product(individual_stock=0, set_stock=2)
        assert product.in_stock
        assert catalog_service.is_in_stock(product.id)

    def test_out_of_stock_when_all_modes_empty(self, make_product):
        product = make_product(individual_stock=0, set_stock=0)
        assert not product.in_stock
        assert not catalog_service.is_in_stock(product.id)

    def test_flag_follows_stock_debits(self, buyer, make_product):
        product = make_product(individual_stock=1, enable_set=False, set_price_wei=0, set_stock=0, set_boxes=0)
        order_service.buy(buyer.address, product.id, False, 1, None, 100)
        assert not catalog_service.get_product(product.id).in_stock

    def test_price_by_mode(self, product):
        assert order_service.product_price(product.id, False, 3) == 300
        assert order_service.product_price(product.id, True, 2) == 1000

    def test_price_falls_back_to_legacy_price(self, make_product):
        product = make_product(individual_price_wei=0, price_wei=70)
        assert order_service.product_price(product.id, False, 2) == 140
        assert order_service.product_price(product.id, True, 1) == 500

    def test_price_needs_positive_qty(self, product):
        with pytest.raises(ValidationError):
            order_service.product_price(product.id, False, 0)
