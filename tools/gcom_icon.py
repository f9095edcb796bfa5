#!/usr/bin/env python3
"""
Tiger game.com ROM icon decoding.

Pipeline:
- Read the cartridge header (offset 0, or the 0x40000 copy on bad dumps).
- Locate the icon: an RLE-compressed 64x64 blob, or a 64x64 window inside a
  256x256 image bank.
- Expand 2bpp indexed pixels to RGBA, fix the stored orientation, then crop
  and optionally upscale 2x for 128x128 output.

File I/O and PNG encoding live in gcom_extract.py; everything here works on
in-memory bytes and numpy arrays.
"""

from __future__ import annotations

import dataclasses
import struct
from typing import Optional

import numpy as np


BANK_LEN = 0x2000
BANK_LOAD_ADDR = 0x6000
BANK_BASE = 0x20

IMAGE_BANK_SIZE = 256
IMAGE_BANK_LEN = (IMAGE_BANK_SIZE * IMAGE_BANK_SIZE) // 4

ICON_SIZE = 64
ICON_LEN = ICON_SIZE * ICON_SIZE
ICON_PACKED_LEN = ICON_LEN // 4

UPSCALED_SIZE = ICON_SIZE * 2

ALT_HEADER_OFFSET = 0x40000

HEADER_FMT = "<BBHB9sBBB9s2sB3s"
HEADER_LEN = struct.calcsize(HEADER_FMT)

FLAG_HAS_ICON = 1 << 1
FLAG_ICON_COMPRESSED = 1 << 3

RLE_RUN16 = 0xC0

# White, light gray, dark gray, black.
GC_PALETTE = np.array(
    [
        (0xFF, 0xFF, 0xFF, 0xFF),
        (0xC0, 0xC0, 0xC0, 0xFF),
        (0x80, 0x80, 0x80, 0xFF),
        (0x00, 0x00, 0x00, 0xFF),
    ],
    dtype=np.uint8,
)
GC_PALETTE.setflags(write=False)


class GcomError(ValueError):
    pass


class DecodeError(GcomError):
    pass


class NoIconPresent(DecodeError):
    pass


class TruncatedRom(DecodeError):
    pass


class TruncatedStream(DecodeError):
    def __init__(self, message: str, partial: bytes = b""):
        super().__init__(message)
        self.partial = partial


class IconOutOfBank(DecodeError):
    pass


class CodecOverrun(DecodeError):
    """RLE output would exceed the caller's capacity.

    ``partial`` holds everything decoded before the offending unit.
    """

    def __init__(self, message: str, partial: bytes = b""):
        super().__init__(message)
        self.partial = partial


class EncodeError(GcomError):
    pass


@dataclasses.dataclass(frozen=True)
class RomHeader:
    size: int
    entry_bank: int
    entry_address: int
    flags: int
    system: bytes
    icon_bank: int
    icon_x: int
    icon_y: int
    title: bytes
    game_id: bytes
    security_code: int
    pad: bytes
    base: int = 0

    @classmethod
    def unpack(cls, data: bytes, base: int = 0) -> "RomHeader":
        if len(data) < HEADER_LEN:
            raise TruncatedRom(f"Header at 0x{base:X} needs {HEADER_LEN} bytes, got {len(data)}")
        fields = struct.unpack_from(HEADER_FMT, data, 0)
        return cls(*fields, base=base)

    @property
    def has_icon(self) -> bool:
        return (self.flags & FLAG_HAS_ICON) != 0

    @property
    def icon_compressed(self) -> bool:
        return (self.flags & FLAG_ICON_COMPRESSED) != 0

    @property
    def title_text(self) -> str:
        return _fixed_ascii(self.title)

    @property
    def system_text(self) -> str:
        return _fixed_ascii(self.system)


@dataclasses.dataclass(frozen=True)
class IconLocation:
    offset: int
    length: int
    compressed: bool
    bank_x: int = 0
    bank_y: int = 0


@dataclasses.dataclass
class RGBAImage:
    width: int
    height: int
    pixels: np.ndarray

    def __post_init__(self) -> None:
        if self.pixels.shape != (self.height, self.width, 4):
            raise ValueError(
                f"pixel buffer shape {self.pixels.shape} does not match {self.width}x{self.height} RGBA"
            )


def _fixed_ascii(raw: bytes) -> str:
    # Fixed-width fields are NUL padded; stop at the first NUL like %.9s.
    return raw.split(b"\x00", 1)[0].decode("ascii", errors="replace")


def _header_is_bad_dump(size: int) -> bool:
    return size in (0x00, 0xFF)


def read_header(rom: bytes) -> RomHeader:
    if len(rom) < HEADER_LEN:
        raise TruncatedRom(f"ROM is {len(rom)} bytes, too small for a {HEADER_LEN}-byte header")
    hdr = RomHeader.unpack(rom[:HEADER_LEN])
    if _header_is_bad_dump(hdr.size):
        alt = rom[ALT_HEADER_OFFSET : ALT_HEADER_OFFSET + HEADER_LEN]
        hdr = RomHeader.unpack(alt, base=ALT_HEADER_OFFSET)
    return hdr


def locate_icon(hdr: RomHeader) -> IconLocation:
    if not hdr.has_icon:
        raise NoIconPresent("Game has no icon")
    if hdr.icon_compressed:
        # Bank-relative address mapped at 0x6000; the result is a plain file offset.
        addr = (hdr.icon_x << 8) | hdr.icon_y
        offset = (hdr.icon_bank - BANK_BASE) * BANK_LEN + (addr - BANK_LOAD_ADDR)
        return IconLocation(offset=offset, length=ICON_LEN, compressed=True)
    # entry_bank // 2 is format-derived; kept exactly as cartridges expect it.
    offset = hdr.base + (hdr.icon_bank - (hdr.entry_bank // 2)) * IMAGE_BANK_LEN
    return IconLocation(
        offset=offset,
        length=IMAGE_BANK_LEN,
        compressed=False,
        bank_x=hdr.icon_x,
        bank_y=hdr.icon_y,
    )


def read_window(rom: bytes, offset: int, length: int, allow_short: bool = False) -> bytes:
    if offset < 0 or offset >= len(rom):
        raise TruncatedRom(f"Offset 0x{offset:X} is outside the {len(rom)}-byte ROM")
    end = offset + length
    if end > len(rom) and not allow_short:
        raise TruncatedRom(
            f"Need 0x{length:X} bytes at 0x{offset:X} but ROM ends at 0x{len(rom):X}"
        )
    return bytes(rom[offset:end])


def rle_decompress(
    data: bytes,
    in_len: Optional[int] = None,
    capacity: int = ICON_LEN,
    lenient: bool = False,
) -> bytes:
    """Expand the game.com icon RLE stream.

    Opcodes by lead byte:
      0xC0       run of u16le count, then fill byte (4 bytes)
      0xC1-0xFF  run of (lead & 0x3F), then fill byte (2 bytes)
      0x00-0xBF  literal

    Decoding stops when ``in_len`` input bytes are consumed; nothing past
    ``in_len`` is read. Output is capped at ``capacity``: strict mode raises
    CodecOverrun, lenient mode truncates there. A run cut off by ``in_len``
    raises TruncatedStream, or ends decoding in lenient mode.
    """
    n = len(data) if in_len is None else min(int(in_len), len(data))
    out = bytearray()
    pos = 0
    while pos < n:
        lead = data[pos]
        if lead == RLE_RUN16:
            if pos + 4 > n:
                if lenient:
                    break
                raise TruncatedStream(f"16-bit run at 0x{pos:X} runs past input end 0x{n:X}", bytes(out))
            count = data[pos + 1] | (data[pos + 2] << 8)
            fill = data[pos + 3]
            step = 4
        elif lead > RLE_RUN16:
            if pos + 2 > n:
                if lenient:
                    break
                raise TruncatedStream(f"8-bit run at 0x{pos:X} runs past input end 0x{n:X}", bytes(out))
            count = lead & 0x3F
            fill = data[pos + 1]
            step = 2
        else:
            count = 1
            fill = lead
            step = 1

        if len(out) + count > capacity:
            room = capacity - len(out)
            if lenient:
                out.extend(bytes([fill]) * room)
                break
            raise CodecOverrun(
                f"RLE unit at 0x{pos:X} writes {count} bytes with only {room} of {capacity} left",
                bytes(out),
            )
        out.extend(bytes([fill]) * count)
        pos += step
    return bytes(out)


def unpack_2bpp(data: bytes, count: int) -> np.ndarray:
    """Palette indices for ``count`` pixels, most significant pair first."""
    need = count // 4
    if len(data) < need:
        raise DecodeError(f"2bpp data too short: need {need} bytes, got {len(data)}")
    packed = np.frombuffer(bytes(data[:need]), dtype=np.uint8)
    idx = np.stack([(packed >> 6) & 3, (packed >> 4) & 3, (packed >> 2) & 3, packed & 3], axis=1)
    return idx.reshape(-1)


def expand_gc(data: bytes, width: int, height: int) -> np.ndarray:
    """Decode a 2-bit game.com bitmap into a (height, width, 4) RGBA array.

    Pixels are stored rotated and mirrored; the fix-up (rotate 270, flip
    horizontally) reads only from the unpacked scratch buffer.
    """
    if width <= 0 or height <= 0 or (width * height) % 4 != 0:
        raise DecodeError(f"Unsupported bitmap size {width}x{height}")
    scratch = GC_PALETTE[unpack_2bpp(data, width * height)]

    out = np.empty((height, width, 4), dtype=np.uint8)
    ys = np.arange(height)[:, None]
    xs = np.arange(width)[None, :]
    dst_x = width - xs - 1
    out[ys, dst_x] = scratch[ys + dst_x * height]
    return out


def _bank_window(src: np.ndarray, bank_x: int, bank_y: int) -> np.ndarray:
    # Flat addressing with the bank stride: a window past the right edge
    # continues on the next row, only reads past the last pixel are refused.
    flat = src.reshape(-1, 4)
    last = (bank_y + ICON_SIZE - 1) * IMAGE_BANK_SIZE + bank_x + ICON_SIZE - 1
    if bank_x < 0 or bank_y < 0 or last >= flat.shape[0]:
        raise IconOutOfBank(f"Icon window at ({bank_x}, {bank_y}) leaves the {IMAGE_BANK_SIZE}x{IMAGE_BANK_SIZE} bank")
    ys = np.arange(ICON_SIZE)[:, None]
    xs = np.arange(ICON_SIZE)[None, :]
    return flat[(bank_y + ys) * IMAGE_BANK_SIZE + bank_x + xs]


def crop_upscale_icon(
    src: np.ndarray,
    upscale: bool = False,
    in_bank: bool = False,
    bank_x: int = 0,
    bank_y: int = 0,
) -> np.ndarray:
    if in_bank:
        if src.shape != (IMAGE_BANK_SIZE, IMAGE_BANK_SIZE, 4):
            raise DecodeError(f"Bank image must be {IMAGE_BANK_SIZE}x{IMAGE_BANK_SIZE} RGBA, got shape {src.shape}")
        window = _bank_window(src, bank_x, bank_y)
    else:
        if src.shape != (ICON_SIZE, ICON_SIZE, 4):
            raise DecodeError(f"Icon image must be {ICON_SIZE}x{ICON_SIZE} RGBA, got shape {src.shape}")
        window = src

    if not upscale:
        return np.array(window, dtype=np.uint8, copy=True)

    out = np.empty((UPSCALED_SIZE, UPSCALED_SIZE, 4), dtype=np.uint8)
    for y in range(ICON_SIZE):
        row = out[y * 2]
        row[0::2] = window[y]
        row[1::2] = window[y]
        out[y * 2 + 1] = row
    return out


def _decompress_at(rom: bytes, loc: IconLocation, lenient: bool) -> bytes:
    if not loc.compressed:
        raise DecodeError("Icon is stored uncompressed in an image bank")
    blob = read_window(rom, loc.offset, loc.length, allow_short=True)
    try:
        dec = rle_decompress(blob, len(blob), capacity=ICON_LEN, lenient=lenient)
    except (CodecOverrun, TruncatedStream) as exc:
        if len(exc.partial) < ICON_PACKED_LEN:
            raise
        dec = exc.partial
    if len(dec) < ICON_PACKED_LEN:
        if not lenient:
            raise TruncatedStream(f"Compressed icon decoded to {len(dec)} bytes, expected {ICON_PACKED_LEN}", dec)
        dec = dec + bytes(ICON_PACKED_LEN - len(dec))
    return dec[:ICON_PACKED_LEN]


def decompress_icon(rom: bytes, hdr: Optional[RomHeader] = None, lenient: bool = False) -> bytes:
    """Indexed icon bytes for a compressed icon, exactly ICON_PACKED_LEN long.

    The compressed size isn't stored, so a fixed ICON_LEN window is decoded
    and whatever follows the icon in that window is decoded too. An overrun
    or cut-off run is only an error if it happens before the icon's own
    ICON_PACKED_LEN bytes are complete. With ``lenient`` a short icon is
    zero padded instead.
    """
    if hdr is None:
        hdr = read_header(rom)
    return _decompress_at(rom, locate_icon(hdr), lenient)


def decode_icon(
    rom: bytes,
    hdr: Optional[RomHeader] = None,
    upscale: bool = False,
    lenient: bool = False,
) -> RGBAImage:
    if hdr is None:
        hdr = read_header(rom)
    loc = locate_icon(hdr)
    if loc.compressed:
        dec = _decompress_at(rom, loc, lenient)
        icon_rgb = expand_gc(dec, ICON_SIZE, ICON_SIZE)
        px = crop_upscale_icon(icon_rgb, upscale=upscale)
    else:
        bank = read_window(rom, loc.offset, loc.length)
        bank_img = expand_gc(bank, IMAGE_BANK_SIZE, IMAGE_BANK_SIZE)
        px = crop_upscale_icon(bank_img, upscale=upscale, in_bank=True, bank_x=loc.bank_x, bank_y=loc.bank_y)
    size = UPSCALED_SIZE if upscale else ICON_SIZE
    return RGBAImage(width=size, height=size, pixels=px)
