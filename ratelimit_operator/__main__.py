#!/usr/bin/env python
"""
The main module provides the executable entrypoint for ratelimit_operator
"""

# Standard
from typing import Dict, List, Optional, Tuple
import argparse
import sys

# First Party
import alog

# Local
from . import config
from .cmd import CmdBase, ReconcileCmd
from .config import library_config
from .log_format import RateLimiterJsonFormatter
from .utils import nested_set

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(
    parser, config_obj: Optional[dict] = None, path: Optional[List[str]] = None
) -> Dict[str, List[str]]:
    """Add a --<dotted.key> override for every leaf value of the library config

    Returns:
        setters:  Dict[str, List[str]]
            Mapping from the argument dest to the key path in the config
    """
    setters = {}
    config_obj = library_config if config_obj is None else config_obj
    for key, val in config_obj.items():
        sub_path = (path or []) + [key]
        if isinstance(val, dict):
            setters.update(add_library_config_args(parser, val, sub_path))
            continue

        arg_name = ".".join(sub_path)
        if f"--{arg_name}" in parser._option_string_actions:  # pylint: disable=protected-access
            continue
        kwargs = {
            "dest": "_".join(sub_path),
            "default": val,
            "help": f"Library config override for {arg_name} (default: %(default)s)",
        }
        if isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif val is not None:
            kwargs["type"] = type(val)
        parser.add_argument(f"--{arg_name}", **kwargs)
        setters[kwargs["dest"]] = sub_path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, List[str]]):
    """Write the parsed override values back into the library config"""
    for dest_name, config_path in setters.items():
        nested_set(library_config, ".".join(config_path), getattr(args, dest_name))


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, str]]:
    """Add the subparser and set up the default fun call"""
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    library_args = parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)
    return parser, library_config_setters


## Main ########################################################################


def main(argv=None) -> int:
    """The main module provides the executable entrypoint for ratelimit_operator"""
    parser = argparse.ArgumentParser(description=__doc__)

    # Add the subcommands
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    reconcile_cmd = ReconcileCmd()
    _, library_config_setters = add_command(subparsers, reconcile_cmd)
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    # Provide overrides to the library configs
    update_library_config(args, library_config_setters)

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=RateLimiterJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    # Run the command's function
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
