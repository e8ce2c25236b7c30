import ipaddress

import pytest

from raintorrent.peerpriority import calculate, crc32c


def addr(ip, port=0):
    return (ip, port)


def test_peer_priority_different_subnets():
    assert calculate(addr("123.213.32.10"), addr("98.76.54.32")) == 0xEC2D7224
    assert calculate(addr("98.76.54.32"), addr("123.213.32.10")) == 0xEC2D7224


def test_peer_priority_same_subnet():
    assert calculate(addr("123.213.32.10"), addr("123.213.32.234")) == 0x99568189


def test_crc32c_check_value():
    assert crc32c(b"123456789") == 0xE3069283


def test_crc32c_empty():
    assert crc32c(b"") == 0


def test_same_ip_uses_ports_symmetrically():
    ip = "10.0.0.1"
    assert calculate(addr(ip, 6881), addr(ip, 6882)) == calculate(addr(ip, 6882), addr(ip, 6881))
    assert calculate(addr(ip, 6881), addr(ip, 6882)) == crc32c(
        (6881).to_bytes(2, "big") + (6882).to_bytes(2, "big")
    )


def test_accepts_address_objects_and_mapped_ipv6():
    plain = calculate(addr("123.213.32.10"), addr("98.76.54.32"))
    assert calculate(addr(ipaddress.IPv4Address("123.213.32.10")), addr("98.76.54.32")) == plain
    assert calculate(addr("::ffff:123.213.32.10"), addr("98.76.54.32")) == plain


def test_ipv6_rejected():
    with pytest.raises(ValueError):
        calculate(addr("2001:db8::1"), addr("98.76.54.32"))