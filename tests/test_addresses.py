import ipaddress
from itertools import islice

import pytest

from reconbox.addresses import (
    address_count,
    expand_cidr,
    iter_addresses,
    parse_cidr,
    parse_port_range,
    validate_port_range,
)
from reconbox.errors import InvalidPortRange, InvalidRangeSpec


@pytest.mark.parametrize("prefix", range(0, 33))
def test_address_count_matches_prefix(prefix):
    assert address_count(f"10.0.0.0/{prefix}") == 2 ** (32 - prefix)


@pytest.mark.parametrize("prefix", range(20, 33))
def test_expansion_is_complete_and_ascending(prefix):
    cidr = f"172.16.0.0/{prefix}"
    addresses = expand_cidr(cidr)
    network = ipaddress.ip_network(cidr)

    assert len(addresses) == 2 ** (32 - prefix)
    assert all(a < b for a, b in zip(addresses, addresses[1:]))
    assert addresses[0] == network.network_address
    assert addresses[-1] == network.broadcast_address


def test_small_range_includes_network_and_broadcast():
    assert [str(a) for a in expand_cidr("192.168.50.0/30")] == [
        "192.168.50.0",
        "192.168.50.1",
        "192.168.50.2",
        "192.168.50.3",
    ]


def test_host_bits_are_masked():
    assert [str(a) for a in expand_cidr("10.0.0.7/30")] == [
        "10.0.0.4",
        "10.0.0.5",
        "10.0.0.6",
        "10.0.0.7",
    ]


def test_single_address_range():
    assert expand_cidr("8.8.8.8/32") == [ipaddress.IPv4Address("8.8.8.8")]


def test_whole_space_is_lazy():
    first = list(islice(iter_addresses("0.0.0.0/0"), 3))
    assert [str(a) for a in first] == ["0.0.0.0", "0.0.0.1", "0.0.0.2"]


def test_parse_cidr_returns_network():
    assert parse_cidr(" 192.168.1.0/24 ") == ipaddress.IPv4Network("192.168.1.0/24")


@pytest.mark.parametrize(
    "spec",
    ["", "10.0.0.0", "10.0.0.0/33", "300.1.1.1/24", "abc/24", "fe80::/64", "10.0.0.0/x"],
)
def test_invalid_cidr(spec):
    with pytest.raises(InvalidRangeSpec) as info:
        expand_cidr(spec)
    assert isinstance(info.value, ValueError)


def test_parse_port_range():
    assert parse_port_range("20-25") == (20, 25)
    assert parse_port_range("80") == (80, 80)
    assert parse_port_range(" 1 - 1024") == (1, 1024)


@pytest.mark.parametrize("spec", ["25-20", "70000", "0-65536"])
def test_parse_port_range_invalid(spec):
    with pytest.raises(InvalidPortRange):
        parse_port_range(spec)


def test_validate_port_range_bounds():
    validate_port_range(0, 65535)
    validate_port_range(80, 80)
    with pytest.raises(InvalidPortRange):
        validate_port_range(-1, 10)
    with pytest.raises(InvalidPortRange):
        validate_port_range(10, 9)
