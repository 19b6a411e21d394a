from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

from .api import OptimizationSettings, analyze, optimize, statistics
from .cli import parse_args
from .errors import SceneTrimError
from .stats import format_statistics

LOG = logging.getLogger("scenetrim")


def _emit(payload: Any, *, as_json: bool, lines: Sequence[str]) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
    else:
        for line in lines:
            print(line)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    settings = OptimizationSettings(
        scene_path=Path(args.scene_path),
        output_path=Path(args.output_path) if args.output_path else None,
        manifest_path=Path(args.config_path) if args.config_path else None,
        enable_material_dedup=args.enable_material_dedup,
        enable_instancing=args.enable_instancing,
        enable_merging=args.enable_merging,
        logger=LOG,
    )
    if args.output_path and args.command != "optimize":
        LOG.warning("--output is only used by 'optimize'; ignoring it")
    try:
        if args.command == "stats":
            stats = statistics(settings)
            _emit(stats.as_dict(), as_json=args.as_json, lines=format_statistics(stats))
        elif args.command == "analyze":
            suggestions = analyze(settings)
            lines = []
            for stage, stage_lines in suggestions.items():
                lines.append(f"[{stage}]")
                lines.extend(f"  {line}" for line in stage_lines)
            _emit(suggestions, as_json=args.as_json, lines=lines)
        elif args.command == "optimize":
            report = optimize(settings)
            lines = report.summary()
            if report.after is not None:
                lines.extend(format_statistics(report.after))
            _emit(report.as_dict(), as_json=args.as_json, lines=lines)
        else:  # pragma: no cover - argparse restricts choices
            raise ValueError(f"Unknown command: {args.command}")
    except (SceneTrimError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    return 0


if __name__ == "__main__":
    sys.exit(main())
