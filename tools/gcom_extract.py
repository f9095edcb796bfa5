#!/usr/bin/env python3
"""
Tiger game.com icon extraction helper.

Current capabilities:
- Report the cartridge header and where its icon lives.
- Export the icon as a 64x64 PNG (or 128x128 with --upscale).
- Dump decompressed icon bytes, decode raw 2bpp dumps, batch over a config.

Reports are printed as JSON; errors go to stderr with a non-zero exit code.
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from typing import Any, Dict, List, Optional

import numpy as np
import yaml
from PIL import Image

from gcom_icon import (
    DecodeError,
    EncodeError,
    NoIconPresent,
    RGBAImage,
    RomHeader,
    TruncatedRom,
    decode_icon,
    decompress_icon,
    expand_gc,
    locate_icon,
    read_header,
)


EXIT_OK = 0
EXIT_IO = 1
EXIT_NO_ICON = 2
EXIT_DECODE = 3
EXIT_ENCODE = 4


def save_png(out_path: pathlib.Path, image: RGBAImage) -> None:
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        img = Image.fromarray(np.ascontiguousarray(image.pixels, dtype=np.uint8))
        img.save(out_path, format="PNG")
    except (OSError, ValueError) as exc:
        raise EncodeError(f"Error writing PNG {out_path}: {exc}") from exc


def default_icon_path(rom_path: str, hdr: RomHeader) -> pathlib.Path:
    return pathlib.Path(f"{rom_path}-{hdr.title_text}.png")


def _load_config(path: pathlib.Path) -> Dict[str, Any]:
    ext = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if ext == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValueError("Config root must be a mapping/object")
    return data


def _to_int(v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError("Expected int-like value, got: bool")
    if isinstance(v, int):
        return int(v)
    if isinstance(v, str):
        return int(v, 0)
    raise ValueError(f"Expected int-like value, got: {type(v).__name__}")


def _to_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, int):
        return v != 0
    if isinstance(v, str):
        s = v.strip().lower()
        if s in ("1", "true", "yes", "on"):
            return True
        if s in ("0", "false", "no", "off", ""):
            return False
    raise ValueError(f"Expected bool-like value, got: {v!r}")


def _emit(report: Dict[str, Any], json_path: Optional[str] = None) -> None:
    text = json.dumps(report, indent=2)
    if json_path:
        pathlib.Path(json_path).write_text(text, encoding="utf-8")
    print(text)


def header_report(hdr: RomHeader) -> Dict[str, Any]:
    report: Dict[str, Any] = {
        "header_base": f"0x{hdr.base:X}",
        "size": hdr.size,
        "entry_bank": hdr.entry_bank,
        "entry_address": f"0x{hdr.entry_address:04X}",
        "flags": f"0x{hdr.flags:02X}",
        "has_icon": hdr.has_icon,
        "icon_compressed": hdr.icon_compressed,
        "system": hdr.system_text,
        "title": hdr.title_text,
        "game_id": hdr.game_id.hex().upper(),
        "security_code": hdr.security_code,
        "icon_bank": hdr.icon_bank,
        "icon_x": hdr.icon_x,
        "icon_y": hdr.icon_y,
        "icon_offset": None,
        "icon_length": None,
    }
    if hdr.has_icon:
        loc = locate_icon(hdr)
        report["icon_offset"] = f"0x{loc.offset:X}"
        report["icon_length"] = loc.length
    return report


def extract_icon(
    rom_path: str,
    out: Optional[str] = None,
    upscale: bool = False,
    lenient: bool = False,
    out_dir: Optional[pathlib.Path] = None,
) -> Dict[str, Any]:
    rom = pathlib.Path(rom_path).read_bytes()
    hdr = read_header(rom)
    image = decode_icon(rom, hdr, upscale=upscale, lenient=lenient)
    if out:
        out_path = pathlib.Path(out)
        if out_dir is not None and not out_path.is_absolute():
            out_path = out_dir / out_path
    elif out_dir is not None:
        out_path = out_dir / default_icon_path(pathlib.Path(rom_path).name, hdr)
    else:
        out_path = default_icon_path(rom_path, hdr)
    save_png(out_path, image)
    return {
        "rom": rom_path,
        "title": hdr.title_text,
        "out": str(out_path),
        "width": image.width,
        "height": image.height,
        "compressed": hdr.icon_compressed,
        "upscale": upscale,
    }


def cmd_rom_info(args: argparse.Namespace) -> int:
    rom = pathlib.Path(args.rom).read_bytes()
    hdr = read_header(rom)
    report = {"rom": args.rom, "rom_size": len(rom), **header_report(hdr)}
    _emit(report, args.json)
    return EXIT_OK


def cmd_extract_icon(args: argparse.Namespace) -> int:
    report = extract_icon(args.rom, out=args.out, upscale=bool(args.upscale), lenient=bool(args.lenient))
    _emit(report)
    return EXIT_OK


def cmd_decompress_icon(args: argparse.Namespace) -> int:
    rom = pathlib.Path(args.rom).read_bytes()
    hdr = read_header(rom)
    dec = decompress_icon(rom, hdr, lenient=bool(args.lenient))
    out = pathlib.Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(dec)
    loc = locate_icon(hdr)
    _emit(
        {
            "rom": args.rom,
            "offset": f"0x{loc.offset:X}",
            "out": str(out),
            "decompressed_size": len(dec),
        }
    )
    return EXIT_OK


def cmd_decode_raw(args: argparse.Namespace) -> int:
    w = int(args.width)
    h = int(args.height)
    off = _to_int(args.offset)
    data = pathlib.Path(args.input).read_bytes()
    need = (w * h) // 4
    if off < 0 or off + need > len(data):
        raise TruncatedRom(f"Need 0x{need:X} bytes at 0x{off:X} but input is 0x{len(data):X} bytes")
    px = expand_gc(data[off : off + need], w, h)
    out = pathlib.Path(args.out)
    save_png(out, RGBAImage(width=w, height=h, pixels=px))
    _emit({"out": str(out), "width": w, "height": h, "offset": f"0x{off:X}"})
    return EXIT_OK


def _batch_entry(entry: Any, defaults: Dict[str, Any], out_dir: Optional[pathlib.Path]) -> Dict[str, Any]:
    if isinstance(entry, str):
        entry = {"rom": entry}
    if not isinstance(entry, dict) or "rom" not in entry:
        raise ValueError(f"Batch entry must be a ROM path or a mapping with a 'rom' key, got: {entry!r}")
    upscale = _to_bool(entry.get("upscale", defaults.get("upscale", False)))
    lenient = _to_bool(entry.get("lenient", defaults.get("lenient", False)))
    out = entry.get("out")
    return extract_icon(
        str(entry["rom"]),
        out=str(out) if out is not None else None,
        upscale=upscale,
        lenient=lenient,
        out_dir=out_dir,
    )


def cmd_batch(args: argparse.Namespace) -> int:
    cfg = _load_config(pathlib.Path(args.config))
    defaults = cfg.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise ValueError("Config 'defaults' must be a mapping")
    roms = cfg.get("roms", [])
    if not isinstance(roms, list):
        raise ValueError("Config 'roms' must be a list")
    out_dir = pathlib.Path(args.outdir) if args.outdir else None
    manifest_dir = out_dir if out_dir is not None else pathlib.Path(args.config).parent
    manifest_dir.mkdir(parents=True, exist_ok=True)

    recs: List[Dict[str, Any]] = []
    failed = 0
    for entry in roms:
        try:
            recs.append(_batch_entry(entry, defaults, out_dir))
        except (ValueError, OSError) as exc:
            failed += 1
            rom = entry.get("rom") if isinstance(entry, dict) else entry
            recs.append({"rom": None if rom is None else str(rom), "error": f"{type(exc).__name__}: {exc}"})

    manifest = {
        "config": args.config,
        "entries": recs,
        "counts": {"total": len(recs), "ok": len(recs) - failed, "failed": failed},
    }
    manifest_path = manifest_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    print(json.dumps({"manifest": str(manifest_path), **manifest["counts"]}, indent=2))
    return EXIT_OK if failed == 0 else EXIT_IO


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="game.com icon extraction helper")
    sub = p.add_subparsers(dest="cmd", required=True)

    pri = sub.add_parser("rom-info", help="Report ROM header fields and icon location")
    pri.add_argument("--rom", required=True, help="Path to ROM (.bin)")
    pri.add_argument("--json", help="Optional output JSON path")
    pri.set_defaults(func=cmd_rom_info)

    pei = sub.add_parser("extract-icon", help="Decode the ROM icon to PNG")
    pei.add_argument("--rom", required=True, help="Path to ROM (.bin)")
    pei.add_argument("--out", help="Output PNG path (default: <rom>-<title>.png)")
    pei.add_argument("-u", "--upscale", action="store_true", help="Upscale 2x to 128x128")
    pei.add_argument("--lenient", action="store_true", help="Truncate overlong RLE output instead of failing")
    pei.set_defaults(func=cmd_extract_icon)

    pdi = sub.add_parser("decompress-icon", help="Write decompressed 2bpp icon bytes (compressed icons only)")
    pdi.add_argument("--rom", required=True, help="Path to ROM (.bin)")
    pdi.add_argument("--out", required=True, help="Output binary path")
    pdi.add_argument("--lenient", action="store_true", help="Truncate overlong RLE output instead of failing")
    pdi.set_defaults(func=cmd_decompress_icon)

    pdr = sub.add_parser("decode-raw", help="Decode raw game.com 2bpp bytes to PNG")
    pdr.add_argument("--input", required=True, help="Raw 2bpp binary path")
    pdr.add_argument("--out", required=True, help="Output PNG path")
    pdr.add_argument("--width", required=True, type=int, help="Image width")
    pdr.add_argument("--height", required=True, type=int, help="Image height")
    pdr.add_argument("--offset", default="0", help="Start offset in input (hex or int)")
    pdr.set_defaults(func=cmd_decode_raw)

    pb = sub.add_parser("batch", help="Extract icons for every ROM listed in a JSON/YAML config")
    pb.add_argument("--config", required=True, help="Config file (.json/.yaml/.yml)")
    pb.add_argument("--outdir", help="Output folder for PNGs and manifest.json")
    pb.set_defaults(func=cmd_batch)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return int(args.func(args))
    except NoIconPresent as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_NO_ICON
    except TruncatedRom as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_IO
    except DecodeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_DECODE
    except EncodeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ENCODE
    except OSError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_IO
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_DECODE


if __name__ == "__main__":
    raise SystemExit(main())
