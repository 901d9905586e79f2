"""
Live autospectra from the correlator's etcd command bus.

A request is a JSON command put under ``/cmd/snap/<NN>``; the SNAP2 board
answers under ``/resp/snap/`` with the same ``id`` and 16 autospectra (one
signal block) of 4096 channels. Antenna names resolve through the
``/cfg/system`` document to a board and an FPGA input per polarisation.
"""
import asyncio
import json
import logging
import time
from typing import Dict, NamedTuple, Optional, Tuple

import numpy as np

from spectrum_tui.errors import AntennaNotFound, DecodeError, SourceUnavailable
from spectrum_tui.model import Spectrum
from spectrum_tui.sources import DEFAULT_FREQ_MAX, DEFAULT_FREQ_MIN, SpectrumSource

ETCD_CFG_KEY = "/cfg/system"
ETCD_CMD_ROOT = "/cmd/snap/"
ETCD_RESP_KEY = "/resp/snap/"
DEFAULT_ETCD_PORT = 2379

BLOCK_SIZE = 16  # autospectra per signal block
NCHAN = 4096


class AntInfo(NamedTuple):
    antname: str
    snap2_location: int
    pola_fpga_num: int
    polb_fpga_num: int


def parse_antenna_config(document) -> Dict[str, AntInfo]:
    """
    Reads the ``lwacfg`` table of the system configuration, keyed by lower
    case antenna name.

    The table is either column oriented (``{"antname": {id: name}, ...}``) or
    one dict per antenna (``{id: {"antname": name, ...}}``).
    """
    try:
        table = document["lwacfg"]
    except (KeyError, TypeError):
        raise DecodeError("System configuration has no 'lwacfg' table") from None

    if "snap2_location" in table:
        ids = set()
        for column in table.values():
            ids.update(column)
        rows = [{field: column.get(ant_id) for field, column in table.items()} for ant_id in ids]
    else:
        rows = list(table.values())

    antennas = {}
    for row in rows:
        info = AntInfo(
            antname=str(row.get("antname") or "null"),
            snap2_location=_field(row, "snap2_location"),
            pola_fpga_num=_field(row, "pola_fpga_num"),
            polb_fpga_num=_field(row, "polb_fpga_num"),
        )
        antennas[info.antname.lower()] = info
    return antennas


def _field(row, name) -> int:
    value = row.get(name)
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


def build_command(signal_block: int, timestamp: float) -> Tuple[str, str]:
    """Returns (request id, JSON command) asking for one block of autospectra."""
    seq_id = str(int(round(timestamp * 1e6)))
    command = json.dumps({
        "cmd": "get_new_spectra",
        "val": {
            "block": "autocorr",
            "timestamp": timestamp,
            "kwargs": {"signal_block": signal_block},
        },
        "id": seq_id,
    })
    return seq_id, command


def match_response(value: bytes, seq_id: str) -> Optional[np.ndarray]:
    """The (16, 4096) block from a response value, or None if it answers another request."""
    try:
        message = json.loads(value)
    except ValueError:
        logging.debug(f"Ignoring non-JSON value under {ETCD_RESP_KEY}")
        return None
    if not isinstance(message, dict) or message.get("id") != seq_id:
        return None

    try:
        block = np.asarray(message["val"]["response"], dtype=float)
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed spectra response: {e}") from e
    if block.shape != (BLOCK_SIZE, NCHAN):
        raise DecodeError(f"Cannot fit spectra of shape {block.shape} in to ({BLOCK_SIZE}, {NCHAN})")
    return block


class EtcdSource(SpectrumSource):
    """
    Requests autospectra from the SNAP2 boards over etcd.

    ``client`` is an etcd3 client (``get``, ``put``, ``watch_prefix``). An
    antenna name selects polarisation A unless it ends in ``a`` or ``b``
    after the configured name, e.g. ``LWA-124b``. Names match the
    configuration case-insensitively.
    """

    name = "etcd"

    def __init__(self, client, antennas: Dict[str, AntInfo], address: str = "",
                 client_errors: Tuple[type, ...] = (OSError,)):
        self.client = client
        self.antennas = antennas
        self.address = address
        self.client_errors = client_errors

    @classmethod
    def connect(cls, host: str, port: int = DEFAULT_ETCD_PORT) -> "EtcdSource":
        """Connects and loads the antenna configuration."""
        import etcd3

        errors = (etcd3.exceptions.Etcd3Exception, OSError)
        client = etcd3.client(host=host, port=port)
        try:
            value, _ = client.get(ETCD_CFG_KEY)
        except errors as e:
            raise SourceUnavailable(f"Error connecting to etcd server {host}:{port}: {e}") from e
        if value is None:
            raise SourceUnavailable(f"No {ETCD_CFG_KEY} on etcd server {host}:{port}")
        try:
            document = json.loads(value)
        except ValueError as e:
            raise DecodeError(f"Error generating JSON from etcd response: {e}") from e

        antennas = parse_antenna_config(document)
        logging.info(f"Configuration loaded: {len(antennas)} antennas")
        return cls(client, antennas, f"{host}:{port}", errors)

    def resolve(self, antenna: str) -> Tuple[AntInfo, int]:
        """Configuration entry and FPGA input for ``antenna``."""
        key = antenna.strip().lower()
        pol = "a"
        info = self.antennas.get(key)
        if info is None and key[-1:] in ("a", "b"):
            info = self.antennas.get(key[:-1])
            pol = key[-1]
        if info is None:
            raise AntennaNotFound(f"{antenna} is not in the system configuration")

        fpga_num = info.pola_fpga_num if pol == "a" else info.polb_fpga_num
        if info.snap2_location < 0 or fpga_num < 0:
            raise AntennaNotFound(f"{antenna} has no SNAP2 input configured")
        return info, fpga_num

    async def fetch(self, antenna: str) -> Spectrum:
        info, fpga_num = self.resolve(antenna)
        signal_block, row = divmod(fpga_num, BLOCK_SIZE)
        timestamp = time.time()
        block = await self.request_block(info.snap2_location, signal_block, timestamp)
        freqs = np.linspace(DEFAULT_FREQ_MIN, DEFAULT_FREQ_MAX, NCHAN)
        return Spectrum(freqs, block[row], timestamp)

    async def request_block(self, snap2_location: int, signal_block: int, timestamp: float) -> np.ndarray:
        cmd_key = f"{ETCD_CMD_ROOT}{snap2_location:02d}"
        seq_id, command = build_command(signal_block, timestamp)

        try:
            events, cancel = await asyncio.to_thread(self.client.watch_prefix, ETCD_RESP_KEY)
        except self.client_errors as e:
            raise SourceUnavailable(f"Unable to watch etcd response key: {e}") from e

        # cancelling the watch ends the event iterator, which frees the worker thread
        try:
            try:
                await asyncio.to_thread(self.client.put, cmd_key, command)
            except self.client_errors as e:
                raise SourceUnavailable(f"Unable to put spectrum request: {e}") from e
            block = await asyncio.to_thread(self._wait_for_response, events, seq_id)
        finally:
            cancel()

        if block is None:
            raise SourceUnavailable(f"Watch on {ETCD_RESP_KEY} ended before snap{snap2_location:02d} answered")
        return block

    def _wait_for_response(self, events, seq_id: str) -> Optional[np.ndarray]:
        for event in events:
            value = getattr(event, "value", None)
            if value is None:
                continue
            block = match_response(value, seq_id)
            if block is not None:
                return block
        return None

    def describe(self) -> str:
        return f"etcd {self.address}" if self.address else self.name


def parse_address(address: str) -> Tuple[str, int]:
    """``host`` or ``host:port``."""
    host, sep, port = address.rpartition(":")
    if not sep:
        return address, DEFAULT_ETCD_PORT
    return host, int(port)
