"""bale - fast npm-compatible package installer."""
import asyncio
import logging
import os
import sys

from constants import ExitCodes
from common.errors import BaleError
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from args import parse_args
from cli_config import load_config
import cli_exec
import cli_install
import cli_manifest
import cli_run
import cli_why


def _setup_logging(args):
    """Configure logging from --loglevel/--verbose and --logfile."""
    if getattr(args, "LOG_LEVEL", None):
        os.environ['BALE_LOG_LEVEL'] = str(args.LOG_LEVEL).upper()
    configure_logging(args.LOG_LEVEL)

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logging.getLogger().addHandler(file_handler)
        logging.info("Logging to file: %s", log_file)


async def dispatch(args, config):
    """Run the selected command; returns the process exit code."""
    command = args.COMMAND
    if command in ("install", "i"):
        await cli_install.install(args, config)
    elif command == "update":
        await cli_install.update(args, config)
    elif command == "clean":
        cli_install.clean(args, config)
    elif command in ("add", "a"):
        await cli_manifest.add(args, config)
    elif command in ("remove", "rm"):
        cli_manifest.remove(args, config)
    elif command == "upgrade":
        await cli_manifest.upgrade(args, config)
    elif command == "why":
        cli_why.why(args, config)
    elif command == "run":
        return await cli_run.run_command(args, config)
    elif command == "exec":
        return await cli_exec.exec_command(args, config)
    elif command == "x":
        return await cli_exec.download_and_exec(args, config)
    elif command == "create":
        return await cli_exec.create(args, config)
    return ExitCodes.SUCCESS.value


def main(argv=None):
    """Main function of the program."""
    logger = logging.getLogger(__name__)

    args = parse_args(argv)
    _setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action=args.COMMAND)
        )

    try:
        if args.CWD:
            os.chdir(args.CWD)
        config = load_config(args.CONFIG, ".")
        exit_code = asyncio.run(dispatch(args, config))
    except BaleError as e:
        logging.error("%s", e)
        if e.hint:
            logging.error("Hint: %s", e.hint)
        sys.exit(e.exit_code.value)
    except OSError as e:
        logging.error("File error: %s, aborting", e)
        sys.exit(ExitCodes.FILE_ERROR.value)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(event="function_exit", component="cli", action=args.COMMAND, outcome="success")
        )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
