"""Argument parsing functionality for bale."""

import argparse

from constants import Constants


def build_parser():
    """Build the top-level parser with one subparser per command."""
    parser = argparse.ArgumentParser(
        prog="bale",
        description="bale - fast npm-compatible package installer",
        add_help=True,
    )

    parser.add_argument("--immutable",
                        dest="IMMUTABLE",
                        help=f"Never modify {Constants.LOCKFILE}; fail when it is out of date",
                        action="store_true")
    parser.add_argument("--cwd", "--working-dir",
                        dest="CWD",
                        help="Run as if started in this directory",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-v", "--verbose",
                        dest="VERBOSE",
                        help="Shortcut for --loglevel DEBUG",
                        action="store_true")

    sub = parser.add_subparsers(dest="COMMAND", metavar="COMMAND")
    sub.required = True

    sub.add_parser("install", aliases=["i"], help="Install packages from package.json")
    sub.add_parser("update", help=f"Re-resolve every dependency and rewrite {Constants.LOCKFILE}")
    sub.add_parser("clean", help=f"Remove {Constants.NODE_MODULES} and the {Constants.PRIVATE_DIR} cache")

    add = sub.add_parser("add", aliases=["a"], help="Add packages to package.json")
    add.add_argument("PACKAGES", nargs="+", metavar="NAME[@RANGE]")
    _manifest_flags(add)
    add.add_argument("--pin", "--exact",
                     dest="PIN",
                     help="Write the exact latest version instead of a ^ range",
                     action="store_true")

    remove = sub.add_parser("remove", aliases=["rm"], help="Remove packages from package.json")
    remove.add_argument("PACKAGES", nargs="+", metavar="NAME")
    _manifest_flags(remove)

    upgrade = sub.add_parser("upgrade", help="Move every dependency to its latest version")
    upgrade.add_argument("--pin", "--exact",
                         dest="PIN",
                         help="Write exact versions instead of ^ ranges",
                         action="store_true")

    why = sub.add_parser("why", help="Explain why a package is installed")
    why.add_argument("NAME")
    why.add_argument("VERSION", nargs="?", default=None)

    run = sub.add_parser("run", help="Install, then run a package.json script")
    run.add_argument("SCRIPT")
    run.add_argument("SCRIPT_ARGS", nargs=argparse.REMAINDER)

    exec_ = sub.add_parser("exec", help="Install, then run a command with node_modules/.bin on PATH")
    exec_.add_argument("EXE")
    exec_.add_argument("EXE_ARGS", nargs=argparse.REMAINDER)

    x = sub.add_parser("x", help="Run a package binary, downloading the package if needed")
    x.add_argument("NAME", metavar="NAME[@RANGE]")
    x.add_argument("EXE_ARGS", nargs=argparse.REMAINDER)

    create = sub.add_parser("create", help="Create a new project from a create-NAME starter kit")
    create.add_argument("NAME")

    return parser


def _manifest_flags(parser):
    parser.add_argument("-D", "--dev",
                        dest="DEV",
                        help="Use devDependencies",
                        action="store_true")


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    args = build_parser().parse_args(argv)
    if args.VERBOSE:
        args.LOG_LEVEL = "DEBUG"
    return args
