import asyncio
import logging
import os
import sys

from camtagger.arguments import SYNOPSIS, USAGE, Parser, UsageError, build_invocation, split_argv
from camtagger.tagger import amain

HELP_FLAGS = ("-h", "--help")


def usage() -> None:
    print(USAGE.format(prog=os.path.basename(sys.argv[0]) or "camtagger"))
    sys.exit(1)


def main() -> None:
    parser = Parser(
        config_files=[os.getenv("CAMTAGGER_CONFIG", "~/.config/camtagger/camtagger.ini")],
        auto_env_var_prefix="CAMTAGGER_",
        usage=SYNOPSIS,
    )

    argv = sys.argv[1:]
    try:
        options, command, paths = split_argv(argv)
    except UsageError:
        if any(flag in argv for flag in HELP_FLAGS):
            parser.parse_args(["--help"])
        usage()
        return

    try:
        parser.parse_args(options)
    except SystemExit as e:
        # --help exits cleanly, anything argparse rejects is a usage error
        if e.code:
            usage()
        raise

    try:
        invocation = build_invocation(command, paths)
    except UsageError:
        usage()
        return

    logging.basicConfig(level=parser.log_level, format="[%(levelname)s] %(message)s", stream=sys.stderr)
    try:
        asyncio.run(amain(parser, invocation))
    except KeyboardInterrupt:
        logging.info("Gracefully exited on keyboard interrupt")


if __name__ == "__main__":
    main()
