# backend/modules/menu/tests/test_menu_prices.py

from decimal import Decimal

from modules.menu.services.menu_price_service import (
    get_menu_items,
    get_prices,
    seed_menu_items,
)


class TestMenuPrices:
    def test_prices_are_minor_units(self, db_session):
        prices = get_prices(db_session, [1, 3, 999])
        assert set(prices) == {1, 3}
        assert prices[1].price == 18000

    def test_available_only(self, db_session):
        names = [item.name for item in get_menu_items(db_session)]
        assert "Buff Sekuwa" not in names
        assert len(get_menu_items(db_session, available_only=False)) == 4

    def test_seed_updates_existing_rows(self, db_session):
        seed_menu_items(db_session, [{"id": 1, "name": "Chicken Momo", "price": "200"}])
        assert get_prices(db_session, [1])[1].price == 20000

    def test_route_returns_major_units(self, client):
        response = client.get("/api/menu/items")
        assert response.status_code == 200
        items = {item["id"]: item for item in response.json()}
        assert Decimal(items[1]["price"]) == Decimal("180.00")
        assert 4 not in items
