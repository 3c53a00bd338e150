"""Tests for the AddressBookMapper adapter."""

import pytest

from src.hillstone.api.exceptions import ValidationFailure
from src.hillstone.api.normalizer import normalize_object
from src.hillstone.sync.adapters.field_mapper import AddressBookMapper
from src.hillstone.sync.domain.entities import AddressBookObject, IPEntry, Member


class TestAddressBookMapper:
    """Tests for AddressBookMapper."""

    @pytest.fixture
    def mapper(self):
        return AddressBookMapper()

    @pytest.fixture
    def raw_full(self):
        return normalize_object({
            "name": "web-servers",
            "member": [
                "10.0.0.1",
                {"name": "lb", "value": "10.0.1.0/24", "description": "load balancers"},
            ],
            "predefined": False,
            "description": "Web tier",
            "object_data": {
                "ip": [{"ip_addr": "10.0.0.1", "ip_address": "10.0.0.1", "netmask": "255.255.255.255", "flag": 1}],
                "is_ipv6": False,
                "predefined": False,
            },
        })

    def test_map_minimal(self, mapper):
        obj = mapper.map_to_entity(normalize_object({"name": "empty"}))

        assert isinstance(obj, AddressBookObject)
        assert obj.name == "empty"
        assert obj.members == []
        assert obj.detail is None
        assert obj.type == "address"

    def test_map_full(self, mapper, raw_full):
        obj = mapper.map_to_entity(raw_full)

        assert obj.name == "web-servers"
        assert obj.description == "Web tier"
        assert obj.members == [
            Member(name="10.0.0.1", type="ipv4", value="10.0.0.1"),
            Member(name="lb", type="ipv4_cidr", value="10.0.1.0/24", description="load balancers"),
        ]
        assert obj.detail is not None
        assert obj.detail.ip[0]["flag"] == 1
        assert obj.raw_data["name"] == "web-servers"

    def test_name_is_stored_form(self, mapper):
        obj = mapper.map_to_entity(normalize_object({"name": " <b>web</b> "}))
        assert obj.name == "web"

    def test_scalar_detail_ip_is_one_entry(self, mapper):
        obj = mapper.map_to_entity({"name": "x", "object_data": {"ip": "10.0.0.1"}})

        assert obj.detail.ip == ["10.0.0.1"]
        assert [e.ip_address for e in mapper.map_ip_entries(obj.detail.ip)] == ["10.0.0.1"]

    def test_members_to_json(self, mapper, raw_full):
        obj = mapper.map_to_entity(raw_full)

        assert mapper.members_to_json(obj.members) == [
            {"name": "10.0.0.1", "type": "ipv4", "value": "10.0.0.1"},
            {"name": "lb", "type": "ipv4_cidr", "value": "10.0.1.0/24", "description": "load balancers"},
        ]


class TestNameValidation:
    @pytest.fixture
    def mapper(self):
        return AddressBookMapper()

    def test_trims_and_strips_tags(self, mapper):
        assert mapper.validate_name("  <b>web</b> ") == "web"

    @pytest.mark.parametrize("name", ["", "   ", None, "<i></i>"])
    def test_empty_rejected(self, mapper, name):
        with pytest.raises(ValidationFailure) as exc:
            mapper.validate_name(name)
        assert exc.value.field == "name"

    def test_max_length(self, mapper):
        assert mapper.validate_name("a" * 255) == "a" * 255
        with pytest.raises(ValidationFailure):
            mapper.validate_name("a" * 256)


class TestIPEntries:
    @pytest.fixture
    def mapper(self):
        return AddressBookMapper()

    def test_string_with_prefix(self, mapper):
        assert mapper.map_ip_entry("10.0.0.0/24") == IPEntry(
            ip_addr="10.0.0.0/24",
            ip_address="10.0.0.0/24",
            netmask="255.255.255.0",
            flag=0,
        )

    def test_plain_ipv6_string(self, mapper):
        entry = mapper.map_ip_entry("2001:db8::1")
        assert entry.netmask == "ffff:ffff:ffff:ffff:ffff:ffff:ffff:ffff"

    def test_mapping(self, mapper):
        entry = mapper.map_ip_entry({"ip_addr": "host-a", "ip_address": " 10.0.0.5 ", "netmask": "255.255.255.255", "flag": "2"})
        assert entry == IPEntry(ip_addr="host-a", ip_address="10.0.0.5", netmask="255.255.255.255", flag=2)

    def test_bad_flag_defaults_to_zero(self, mapper):
        assert mapper.map_ip_entry({"ip_address": "10.0.0.5", "flag": "x"}).flag == 0

    def test_invalid_address_kept(self, mapper, caplog):
        entry = mapper.map_ip_entry("not-an-ip")

        assert entry.ip_address == "not-an-ip"
        assert entry.netmask == ""
        assert "Invalid IP address format" in caplog.text

    def test_unexpected_items_skipped(self, mapper):
        assert mapper.map_ip_entries(["10.0.0.1", 7, None]) == [mapper.map_ip_entry("10.0.0.1")]

    def test_is_valid_ip(self, mapper):
        assert mapper.is_valid_ip("10.0.0.1")
        assert mapper.is_valid_ip("10.0.0.0/8")
        assert not mapper.is_valid_ip("10.0.0.300")
