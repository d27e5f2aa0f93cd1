from __future__ import annotations

import argparse
from dataclasses import replace
import logging
from pathlib import Path

from .batch import process_batch
from .codecs import list_formats, option_names
from .presets import PRESET_NAMES, apply_preset
from .report import build_report, save_report_csv, save_report_json
from .results import FileStatus
from .settings import NamingSettings, PipelineConfig, ResizeSettings


def _format_choices() -> list[str]:
    return [d.format for d in list_formats()]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="bic",
        description="Bulk Image Compressor (pipeline + CLI)",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("formats", help="List output formats and their encoder options")

    c = sub.add_parser("compress", help="Compress images in files/folders")
    c.add_argument("inputs", nargs="+", help="Files and/or folders to process")

    # Output
    c.add_argument("--out", required=True, help="Output directory")
    c.add_argument("--no-recursive", action="store_true", help="Do not scan folders recursively")
    c.add_argument("--no-report", action="store_true", help="Do not write report.json / report.csv")

    # Encoding
    c.add_argument("--preset", choices=PRESET_NAMES, default=None, help="Start from a named preset")
    c.add_argument("--format", dest="output_format", choices=_format_choices(), default=None,
                   help="Output format (default: mozjpeg)")
    c.add_argument("--quality", type=int, default=None, help="Quality 1-100 (default: 75; ignored by oxipng)")

    # Resize
    size = c.add_mutually_exclusive_group()
    size.add_argument("--scale", type=int, default=None, help="Scale percent 1-200 (e.g. 50)")
    size.add_argument("--width", type=int, default=None, help="Target width (dimensions mode)")
    c.add_argument("--height", type=int, default=None, help="Target height (dimensions mode)")
    c.add_argument("--no-keep-aspect", action="store_true", help="Stretch to exactly --width x --height")

    # Naming
    c.add_argument("--prefix", default=None, help="Output name prefix (values starting with '-' need the --prefix=-x form)")
    c.add_argument("--suffix", default=None, help="Output name suffix before the extension (values starting with '-' need the --suffix=-opt form)")

    return p


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig()
    if args.preset:
        config = apply_preset(args.preset, config)

    if args.output_format is not None:
        config = replace(config, output_format=args.output_format)
    if args.quality is not None:
        config = replace(config, quality=args.quality)

    if args.scale is not None:
        config = replace(config, resize=ResizeSettings(enabled=True, mode="scale", scale_percent=args.scale))
    elif args.width is not None or args.height is not None:
        defaults = ResizeSettings()
        config = replace(
            config,
            resize=ResizeSettings(
                enabled=True,
                mode="dimensions",
                width=args.width if args.width is not None else defaults.width,
                height=args.height if args.height is not None else defaults.height,
                maintain_aspect_ratio=not args.no_keep_aspect,
            ),
        )

    if args.prefix is not None or args.suffix is not None:
        config = replace(
            config,
            naming=NamingSettings(
                prefix=args.prefix if args.prefix is not None else config.naming.prefix,
                suffix=args.suffix if args.suffix is not None else config.naming.suffix,
            ),
        )

    return config.validated()


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _print_formats() -> None:
    for d in list_formats():
        quality = "quality" if d.supports_quality else "no quality"
        print(f"  {d.format:<8} {d.label:<8} .{d.extension:<5} ({quality}) options: {', '.join(option_names(d))}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "formats":
        _print_formats()
        return 0

    if args.command == "compress":
        if args.scale is not None and args.height is not None:
            parser.error("--height cannot be combined with --scale")

        inputs = [Path(p) for p in args.inputs]
        out_dir = Path(args.out)
        config = config_from_args(args)

        def on_progress(current: int, total: int) -> None:
            print(f"[{current}/{total}]", end="\r", flush=True)

        records, stats, written = process_batch(
            inputs,
            config,
            out_dir,
            recursive=not bool(args.no_recursive),
            progress_callback=on_progress,
        )

        # Print summary
        print("\n=== Batch Summary ===")
        print("Total found:", stats.total_count)
        print("Done       :", stats.done_count)
        print("Errors     :", stats.error_count)
        print(f"Saved      : {stats.bytes_saved} bytes ({stats.saved_percent:.1f}%)")
        print("Written    :", len(written))

        # Error breakdown
        failed = [r for r in records if r.status is FileStatus.ERROR]
        if failed:
            print("\nErrors:")
            for r in failed:
                print(f"  {r.original.name}: {r.error}")

        if not args.no_report:
            report = build_report(records, stats)

            json_path = out_dir / "report.json"
            save_report_json(report, json_path)

            csv_path = out_dir / "report.csv"
            save_report_csv(report, csv_path)

            print("\nReport written:", json_path)
            print("CSV written   :", csv_path)

        return 1 if failed else 0

    parser.print_help()
    return 2
