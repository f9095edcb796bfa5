from __future__ import annotations

import numpy as np
import pytest

from gcom_icon import GC_PALETTE, expand_gc, unpack_2bpp


WHITE = [0xFF, 0xFF, 0xFF, 0xFF]
LIGHT = [0xC0, 0xC0, 0xC0, 0xFF]
DARK = [0x80, 0x80, 0x80, 0xFF]
BLACK = [0x00, 0x00, 0x00, 0xFF]


def test_unpack_most_significant_pair_first():
    assert unpack_2bpp(bytes([0b11_10_01_00]), 4).tolist() == [3, 2, 1, 0]
    assert GC_PALETTE[[3, 2, 1, 0]].tolist() == [BLACK, DARK, LIGHT, WHITE]


def test_palette_is_read_only():
    with pytest.raises(ValueError):
        GC_PALETTE[0, 0] = 1


def test_2x2_orientation():
    out = expand_gc(bytes([0b11_10_01_00]), 2, 2)
    # Stored order is column-major after the rotate/flip correction.
    assert out.tolist() == [[BLACK, LIGHT], [DARK, WHITE]]


def _single_pixel(k: int, count: int) -> bytes:
    idx = np.zeros(count, dtype=np.uint8)
    idx[k] = 3
    packed = (idx[0::4] << 6) | (idx[1::4] << 4) | (idx[2::4] << 2) | idx[3::4]
    return packed.astype(np.uint8).tobytes()


@pytest.mark.parametrize("width,height", [(8, 8), (8, 4), (4, 12)])
def test_transform_is_a_bijection(width, height):
    seen = set()
    for k in range(width * height):
        out = expand_gc(_single_pixel(k, width * height), width, height)
        black = np.argwhere(out[:, :, 0] == 0)
        assert len(black) == 1
        y, x = (int(v) for v in black[0])
        assert (y, x) == (k % height, k // height)
        seen.add((y, x))
    assert len(seen) == width * height


def test_bank_size_output_shape_and_colors(rng):
    data = bytes(rng.integers(0, 256, size=0x4000, dtype="u1"))
    out = expand_gc(data, 256, 256)
    assert out.shape == (256, 256, 4)
    assert out.dtype == np.uint8
    assert set(np.unique(out[:, :, 0]).tolist()) <= {0x00, 0x80, 0xC0, 0xFF}
    assert (out[:, :, 3] == 0xFF).all()


def test_short_input_rejected():
    with pytest.raises(ValueError):
        expand_gc(b"\x00" * 10, 64, 64)


def test_bad_dimensions_rejected():
    with pytest.raises(ValueError):
        expand_gc(b"\x00" * 4, 3, 3)
