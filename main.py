"""
main.py

Entry point for the ketsim register simulator CLI.
Configures logging and launches the interactive CLI.
"""

import argparse
import logging

from cli import interactive_cli


def main(argv=None):
    """
    Launch the simulator CLI.

    Ensures:
         Logging is configured and the interactive CLI is started.
    """
    parser = argparse.ArgumentParser(description="Interactive n-qubit register simulator")
    parser.add_argument("-n", "--qubits", type=int, default=2, help="initial number of qubits")
    parser.add_argument("--seed", type=int, default=None, help="seed for the random generator")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for INFO, -vv for DEBUG logging")
    args = parser.parse_args(argv)

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    print("=== Starting ketsim register simulator CLI ===")
    interactive_cli(args.qubits, args.seed)


if __name__ == '__main__':
    main()
