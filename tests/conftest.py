from __future__ import annotations

import struct
from typing import Callable

import numpy as np
import pytest

from gcom_icon import HEADER_FMT, ICON_SIZE, IMAGE_BANK_LEN, IMAGE_BANK_SIZE


# Compressed icons sit at bank 0x20, address 0x6100 -> file offset 0x100.
COMPRESSED_ICON_OFFSET = 0x100


def pack_header(
    size: int = 0x20,
    entry_bank: int = 2,
    entry_address: int = 0x2000,
    flags: int = 0x02,
    system: bytes = b"TigerDMGC",
    icon_bank: int = 3,
    icon_x: int = 0,
    icon_y: int = 0,
    title: bytes = b"TESTGAME",
    game_id: bytes = b"\x12\x34",
    security_code: int = 0x5A,
) -> bytes:
    return struct.pack(
        HEADER_FMT,
        size,
        entry_bank,
        entry_address,
        flags,
        system,
        icon_bank,
        icon_x,
        icon_y,
        title,
        game_id,
        security_code,
        b"\x00\x00\x00",
    )


def pack_2bpp(indices: np.ndarray) -> bytes:
    """Pack a (height, width) index image into the cartridge's stored order."""
    stored = np.asarray(indices, dtype=np.uint8).T.reshape(-1)
    packed = (stored[0::4] << 6) | (stored[1::4] << 4) | (stored[2::4] << 2) | stored[3::4]
    return packed.astype(np.uint8).tobytes()


def rle_encode(data: bytes) -> bytes:
    out = bytearray()
    i = 0
    while i < len(data):
        v = data[i]
        run = 1
        while i + run < len(data) and data[i + run] == v and run < 0xFFFF:
            run += 1
        if run >= 0x40:
            out += bytes([0xC0, run & 0xFF, run >> 8, v])
        elif run > 1 or v >= 0xC0:
            out += bytes([0xC0 | run, v])
        else:
            out.append(v)
        i += run
    return bytes(out)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def make_compressed_rom() -> Callable[..., bytes]:
    def _make(icon: np.ndarray, title: bytes = b"PACKED", stream: bytes = b"", rom_len: int = 0x2000) -> bytes:
        if not stream:
            stream = rle_encode(pack_2bpp(icon))
        rom = bytearray(rom_len)
        rom[0:32] = pack_header(flags=0x0A, icon_bank=0x20, icon_x=0x61, icon_y=0x00, title=title)
        end = min(rom_len, COMPRESSED_ICON_OFFSET + len(stream))
        rom[COMPRESSED_ICON_OFFSET:end] = stream[: end - COMPRESSED_ICON_OFFSET]
        return bytes(rom)

    return _make


@pytest.fixture
def make_bank_rom() -> Callable[..., bytes]:
    def _make(
        bank: np.ndarray,
        icon_x: int = 0,
        icon_y: int = 0,
        base: int = 0,
        title: bytes = b"BANKED",
    ) -> bytes:
        assert bank.shape == (IMAGE_BANK_SIZE, IMAGE_BANK_SIZE)
        # entry_bank 2, icon_bank 3: the image bank is (3 - 2 // 2) banks past the base.
        bank_off = base + (3 - 2 // 2) * IMAGE_BANK_LEN
        rom = bytearray(bank_off + IMAGE_BANK_LEN)
        hdr = pack_header(flags=0x02, entry_bank=2, icon_bank=3, icon_x=icon_x, icon_y=icon_y, title=title)
        if base:
            rom[0] = 0xFF
        rom[base : base + 32] = hdr
        rom[bank_off : bank_off + IMAGE_BANK_LEN] = pack_2bpp(bank)
        return bytes(rom)

    return _make


@pytest.fixture
def icon_indices(rng: np.random.Generator) -> np.ndarray:
    return rng.integers(0, 4, size=(ICON_SIZE, ICON_SIZE), dtype=np.uint8)
