import dataclasses

import pytest

from airdap.dap import DapConfig, parity_even_u8, parity_even_u32


@pytest.mark.parametrize(
    "value, expected",
    [(0, 0), (1, 1), (3, 0), (0x80000000, 1), (0xFFFFFFFF, 0), (0x7FFFFFFF, 1)],
)
def test_parity_even_u32_known_values(value, expected):
    assert parity_even_u32(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [(0x00, 0), (0x01, 1), (0x80, 1), (0xFF, 0), (0x07, 1), (0x0F, 0)],
)
def test_parity_even_u8_known_values(value, expected):
    assert parity_even_u8(value) == expected


@pytest.mark.parametrize("word", [0, 1, 0x12345678, 0xDEADBEEF, 0xA5A5A5A5, 0xFFFFFFFF])
def test_word_parity_is_xor_of_byte_parities(word):
    combined = 0
    for shift in (0, 8, 16, 24):
        combined ^= parity_even_u8(word >> shift)
    assert parity_even_u32(word) == combined


def test_parity_flips_with_single_bit():
    for bit in range(32):
        assert parity_even_u32(0x1234 ^ (1 << bit)) != parity_even_u32(0x1234)


def test_parity_u8_ignores_high_bits():
    assert parity_even_u8(0x1FF) == parity_even_u8(0xFF)
    assert parity_even_u8(0x100) == parity_even_u8(0x00)


def test_parity_u32_ignores_bits_above_32():
    assert parity_even_u32(0x1_0000_0001) == parity_even_u32(1)


def test_default_config_sizes():
    config = DapConfig()
    assert config.use_winusb is True
    assert config.endpoint_size() == 512
    assert config.packet_size() == 512


def test_hid_packet_size():
    assert DapConfig(use_winusb=False).packet_size() == 255


def test_usb3_endpoint_size():
    assert DapConfig(use_usb_3_0=True).endpoint_size() == 1024


def test_packet_fits_endpoint():
    for winusb in (True, False):
        for usb3 in (True, False):
            config = DapConfig(use_winusb=winusb, use_usb_3_0=usb3)
            assert config.packet_size() <= config.endpoint_size()


def test_config_is_immutable():
    config = DapConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.use_winusb = False
    assert config.use_winusb is True
    assert config.packet_size() == 512