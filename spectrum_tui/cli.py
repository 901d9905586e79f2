#!/usr/bin/env python3
import argparse
import logging
import sys

from spectrum_tui.app import run_viewer
from spectrum_tui.errors import FetchError
from spectrum_tui.etcd_source import DEFAULT_ETCD_PORT, EtcdSource, parse_address
from spectrum_tui.model import (
    DEFAULT_DELAY,
    DEFAULT_STALE_FACTOR,
    DEFAULT_TIMEOUT,
    FetchOk,
    PollConfig,
)
from spectrum_tui.session import LiveSession
from spectrum_tui.sources import NpyDirectorySource, RemoteFileSource, load_autospectra

DEFAULT_DATA_DIR = "."
DEFAULT_LOG_FILE = "debug.log"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spectrum-tui",
        description="Terminal viewer for antenna autospectra",
        epilog="Example: spectrum-tui live LWA-124 LWA-250 --delay 10 --host lwacalim --data-dir /data/autos",
    )
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose debug logging')
    parser.add_argument('--log-file', type=str, default=DEFAULT_LOG_FILE,
                        help=f'Debug log file path (default: {DEFAULT_LOG_FILE})')
    parser.add_argument('--linear', action='store_true',
                        help='Start with a linear power axis instead of dB')

    subparsers = parser.add_subparsers(dest='command', required=True)

    file_parser = subparsers.add_parser(
        'file', help='Plot spectra from an RFIMonitorTool output npy file')
    file_parser.add_argument('-n', dest='nspectra', type=int, required=True,
                             help='The number of antenna spectra to load')
    file_parser.add_argument('input_file', help='Numpy save file from the RFIMonitor')

    live_parser = subparsers.add_parser(
        'live', help='Watch live autospectra from the correlator')
    live_parser.add_argument('antenna', nargs='+',
                             help='Antenna name(s) to grab autos for, e.g. LWA-124 LWA-250. '
                                  'Names are matched exactly.')
    live_parser.add_argument('--delay', '-d', type=float, default=DEFAULT_DELAY,
                             help=f'Polling interval in seconds (default: {DEFAULT_DELAY:g})')
    live_parser.add_argument('--stale-factor', type=float, default=DEFAULT_STALE_FACTOR,
                             help='Data older than this many poll intervals is marked stale '
                                  f'(default: {DEFAULT_STALE_FACTOR:g})')
    live_parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                             help=f'Per-fetch timeout in seconds (default: {DEFAULT_TIMEOUT:g})')
    live_parser.add_argument('--data-dir', default=DEFAULT_DATA_DIR,
                             help='Directory holding <antenna>.npy spectra '
                                  f'(default: {DEFAULT_DATA_DIR})')
    backend = live_parser.add_mutually_exclusive_group()
    backend.add_argument('--host', default=None,
                         help='Fetch spectra from this host over ssh instead of the local disk')
    backend.add_argument('--etcd', default=None, metavar='HOST[:PORT]',
                         help='Request spectra from the correlator through this etcd server '
                              f'(default port {DEFAULT_ETCD_PORT})')
    return parser


def configure_logging(verbose: bool, log_file: str):
    if verbose:
        logging.basicConfig(
            filename=log_file,
            filemode='a',
            level=logging.DEBUG,
            format='%(asctime)s - %(levelname)s - %(message)s'
        )
        logging.info("Starting spectrum-tui in verbose mode")
    else:
        # Nothing on the terminal; the in-app log pane still shows INFO and above
        logging.basicConfig(level=logging.INFO, handlers=[logging.NullHandler()])


def build_config(args) -> dict:
    config = {
        'command': args.command,
        'log_scale': not args.linear,
    }
    if args.command == 'live':
        config.update({
            'antennas': args.antenna,
            'delay': args.delay,
            'stale_factor': args.stale_factor,
            'timeout': args.timeout,
            'data_dir': args.data_dir,
            'host': args.host,
            'etcd': args.etcd,
        })
    else:
        config.update({
            'nspectra': args.nspectra,
            'input_file': args.input_file,
        })
    return config


def build_session(config: dict) -> LiveSession:
    if config['command'] == 'live':
        if config['etcd']:
            source = EtcdSource.connect(*parse_address(config['etcd']))
        elif config['host']:
            source = RemoteFileSource(config['host'], config['data_dir'])
        else:
            source = NpyDirectorySource(config['data_dir'])
        poll = PollConfig(
            interval=config['delay'],
            stale_factor=config['stale_factor'],
            timeout=config['timeout'],
        )
        session = LiveSession(source, config['antennas'], poll)
    else:
        spectra = load_autospectra(config['input_file'], config['nspectra'])
        session = LiveSession(None, [name for name, _ in spectra])
        for name, spectrum in spectra:
            session.apply(name, FetchOk(spectrum))

    session.ui.log_scale = config['log_scale']
    return session


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'live':
        if args.delay <= 0:
            parser.error("--delay must be positive")
        if args.stale_factor <= 0:
            parser.error("--stale-factor must be positive")
        if args.timeout <= 0:
            parser.error("--timeout must be positive")
        if args.etcd:
            try:
                parse_address(args.etcd)
            except ValueError:
                parser.error(f"--etcd expects HOST or HOST:PORT, got {args.etcd!r}")

    configure_logging(args.verbose, args.log_file)
    config = build_config(args)
    logging.info(f"Configuration: {config}")

    try:
        session = build_session(config)
    except (OSError, FetchError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not sys.stdout.isatty():
        print("Error: spectrum-tui needs an interactive terminal", file=sys.stderr)
        sys.exit(1)

    run_viewer(session)


if __name__ == "__main__":
    main()
