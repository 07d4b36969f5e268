import argparse


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        argv: Arguments to parse; defaults to `sys.argv[1:]`.

    Returns:
        Parsed command line arguments.

    """
    parser = argparse.ArgumentParser(
        description="Run the batch engine with configuration files."
    )
    parser.add_argument(
        "-c",
        "--config",
        type=str,
        default="config/config.yaml",
        help="Path to the engine configuration file (YAML format).",
    )
    parser.add_argument(
        "-l",
        "--logging",
        type=str,
        default="config/logging.yaml",
        help="Path to the logging configuration file (YAML format).",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Override the level of the engine logger (e.g. DEBUG).",
    )
    parser.add_argument(
        "-q",
        "--qasm",
        type=str,
        action="append",
        default=[],
        help="Circuit file (OpenQASM 2.0 subset) to submit; may be repeated.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        type=str,
        default=None,
        help="Target provider name; defaults to the best suggested provider.",
    )
    parser.add_argument(
        "-s",
        "--strategy",
        type=str,
        default="priority",
        help="Scheduling strategy used for the submitted batch.",
    )
    args, _ = parser.parse_known_args(argv)
    return args
