"""Tests for the DeliveryAddress value object and payload coercion."""

import pytest
from protean.exceptions import ValidationError

from dispatch.zoning.address import DeliveryAddress, address_from_payload


class TestDeliveryAddress:
    def test_coordinates_must_come_in_pairs(self):
        with pytest.raises(ValidationError) as exc:
            DeliveryAddress(latitude=8.45)
        assert "coordinates" in exc.value.messages

    def test_latitude_range(self):
        with pytest.raises(ValidationError):
            DeliveryAddress(latitude=91.0, longitude=0.0)

    def test_has_coordinates(self):
        assert DeliveryAddress(latitude=8.45, longitude=124.63).has_coordinates
        assert not DeliveryAddress(zone="Lapasan").has_coordinates


class TestAddressFromPayload:
    def test_first_non_empty_line_key_wins(self):
        address = address_from_payload({"address_line": "  ", "street": "Purok 2", "address": "ignored"})
        assert address.address_line == "Purok 2"

    def test_strings_are_stripped(self):
        address = address_from_payload({"zone": "  Gusa  "})
        assert address.zone == "Gusa"

    def test_long_address_is_truncated(self):
        address = address_from_payload({"address_line": "x" * 2000})
        assert len(address.address_line) == 1000

    def test_out_of_range_coordinates_are_dropped(self):
        address = address_from_payload({"address_line": "Carmen", "lat": 95.0, "lng": 124.6})
        assert address.address_line == "Carmen"
        assert not address.has_coordinates

    def test_existing_address_is_returned(self):
        address = DeliveryAddress(zone="Bulua")
        assert address_from_payload(address) is address

    def test_non_mapping_gives_empty_address(self):
        address = address_from_payload(["Lapasan"])
        assert address.zone is None
        assert address.address_line is None
