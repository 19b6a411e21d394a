from __future__ import annotations

import argparse
from typing import Sequence

COMMANDS = ("stats", "analyze", "optimize")


class _JoinPathAction(argparse.Action):
    """Rejoin a path that the shell split on spaces into one string."""

    def __call__(self, parser, namespace, values, option_string=None):
        joined = " ".join(values).strip()
        setattr(namespace, self.dest, joined or None)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the CLI arguments for the ``scenetrim`` command."""

    parser = argparse.ArgumentParser(
        prog="scenetrim",
        description="Measure and optimize scene snapshots (material dedup, instancing, mesh merging)",
    )
    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="stats: print scene statistics; analyze: dry-run suggestions; optimize: run all passes",
    )
    parser.add_argument(
        "scene_path",
        help="Scene snapshot (.json, .yaml or .yml)",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Optimization manifest (YAML or JSON) with materials/instancing/merging/stages sections",
    )
    parser.add_argument(
        "--output",
        dest="output_path",
        nargs="+",
        action=_JoinPathAction,
        default=None,
        help="Write the optimized scene snapshot here (optimize only)",
    )
    parser.add_argument(
        "--skip-dedup",
        dest="enable_material_dedup",
        action="store_false",
        help="Do not deduplicate materials",
    )
    parser.add_argument(
        "--skip-instancing",
        dest="enable_instancing",
        action="store_false",
        help="Do not convert repeated meshes into instances",
    )
    parser.add_argument(
        "--skip-merge",
        dest="enable_merging",
        action="store_false",
        help="Do not merge meshes sharing a material",
    )
    parser.add_argument(
        "--json",
        dest="as_json",
        action="store_true",
        help="Print machine-readable JSON instead of report lines",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        dest="verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)
