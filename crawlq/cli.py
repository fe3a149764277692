import argparse
import asyncio
import importlib
import logging
from collections.abc import Sequence
from types import ModuleType

from crawlq.core.provider import Provider
from crawlq.runner import run_async, setup_logging
from crawlq.settings import Priority, Settings
from crawlq.utils.settings import parse_value

logger = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entrypoint for `crawlq`.

    Responsibilities:
        - Parse CLI arguments.
        - Build the runtime `Settings` (file < env < `-s` pairs < explicit flags).
        - Configure logging, import the provider class and run the crawl.

    Exits with SystemExit(2) on configuration errors and 130 on Ctrl-C.
    """
    args = parse_args(argv)

    try:
        runtime_settings = Settings.load(config_file=args.settings_file)
        if args.setting:
            runtime_settings = runtime_settings.with_overrides(
                dict(args.setting), priority=Priority.CLI
            )
        flags = {"LOG_LEVEL": args.log_level, "LOG_FILE": args.log_file}
        runtime_settings = runtime_settings.with_overrides(
            {k: v for k, v in flags.items() if v is not None}, priority=Priority.CLI
        )
    except (OSError, TypeError, ValueError) as e:
        logging.error("Invalid settings: %s", e)
        raise SystemExit(2) from e

    setup_logging(
        runtime_settings.LOG_LEVEL,
        runtime_settings.LOG_FILE,
        runtime_settings.LOG_FORMAT,
        runtime_settings.LOG_DATEFORMAT,
    )

    try:
        provider_cls = load_provider_class(args.provider)
    except (ImportError, TypeError) as e:
        logger.error("Failed to load provider %s: %s", args.provider, e)
        raise SystemExit(2) from e

    try:
        asyncio.run(run_async(provider_cls, runtime_settings))
    except KeyboardInterrupt:
        print("\nInterrupted, exiting...")
        raise SystemExit(130) from None


class KeyValueListAction(argparse.Action):
    """Accumulate `KEY=VALUE` pairs into a list of `(key, value)` tuples.

    Values starting with `{` or `[` are parsed as JSON, everything else with
    `parse_literal` (booleans, numbers, strings).
    """

    @staticmethod
    def parse_pair(s: str) -> tuple[str, object]:
        if "=" not in s:
            raise argparse.ArgumentTypeError("must be KEY=VALUE")
        key, raw = s.split("=", 1)
        key = key.strip()
        if not key:
            raise argparse.ArgumentTypeError("KEY must not be empty")
        return key, parse_value(raw)

    def __call__(self, parser, namespace, values, option_string=None):
        target = list(getattr(namespace, self.dest, None) or [])
        try:
            target.append(self.parse_pair(values))
        except argparse.ArgumentTypeError as e:
            raise argparse.ArgumentError(self, f"Invalid setting {values!r}: {e}") from e
        setattr(namespace, self.dest, target)


def load_provider_class(path: str) -> type[Provider]:
    """Import a Provider class.

    Accepted formats:
      - module:Class (preferred)
      - module.Class
      - module (must export a class named `Provider`)
    """
    if ":" in path:
        mod_name, cls_name = path.split(":", 1)
    elif "." in path:
        mod_name, cls_name = path.rsplit(".", 1)
    else:
        mod_name, cls_name = path, "Provider"

    module: ModuleType = importlib.import_module(mod_name)
    cls = getattr(module, cls_name, None)
    if cls is None:
        raise ImportError(f"Module {mod_name!r} has no attribute {cls_name!r}")
    if not isinstance(cls, type) or not issubclass(cls, Provider) or cls is Provider:
        raise TypeError(f"{cls_name!r} is not a subclass of Provider")
    return cls


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    from crawlq import __version__

    parser = argparse.ArgumentParser(
        prog="crawlq",
        description="Run a crawlq Provider",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    g_crawl = parser.add_argument_group("Provider & Crawl Settings")
    g_crawl.add_argument("provider", help="Provider path: module:Class, module.Class or module")
    g_crawl.add_argument(
        "--setting",
        "-s",
        action=KeyValueListAction,
        default=[],
        metavar="KEY=VALUE",
        help="Override a setting, e.g. -s CONCURRENCY=2 (repeatable)",
    )

    g_config = parser.add_argument_group("Configuration")
    g_config.add_argument("--settings-file", help="Load settings from a TOML (or JSON) file")

    g_log = parser.add_argument_group("Logging")
    g_log.add_argument(
        "--log-level", default=None, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    g_log.add_argument("--log-file", help="Log to file instead of stdout")

    parser.add_argument("--version", action="version", version=f"crawlq {__version__}")

    return parser.parse_args(argv)


if __name__ == "__main__":
    main()
