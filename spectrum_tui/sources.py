"""
Spectrum sources and the .npy decoder.

Every provider implements ``SpectrumSource.fetch``: given an antenna name it
returns one Spectrum or raises a FetchError subclass. The poller only sees this
interface, so a new backend is a new subclass and nothing else.
"""
import abc
import asyncio
import io
import logging
import os
import shlex
from pathlib import Path
from typing import List, Tuple

import numpy as np

from spectrum_tui.errors import AntennaNotFound, DecodeError, SourceUnavailable
from spectrum_tui.model import Spectrum

# Frequency axis used when a dump carries power only (MHz)
DEFAULT_FREQ_MIN = 0.0
DEFAULT_FREQ_MAX = 98.3


def decode_npy(payload: bytes) -> np.ndarray:
    """Decodes the bytes of a .npy file into an array."""
    try:
        return np.load(io.BytesIO(payload), allow_pickle=False)
    except (ValueError, OSError, EOFError) as e:
        raise DecodeError(f"Malformed npy payload: {e}") from e


def spectrum_from_array(array: np.ndarray, timestamp: float) -> Spectrum:
    """
    Builds a Spectrum from a decoded array.

    A 1-D array is power on the default frequency axis, a (2, nchan) array is
    a row of frequencies followed by a row of power.
    """
    if array.ndim == 1:
        freqs = np.linspace(DEFAULT_FREQ_MIN, DEFAULT_FREQ_MAX, len(array))
        power = array
    elif array.ndim == 2 and array.shape[0] == 2:
        freqs, power = array
    else:
        raise DecodeError(f"Unexpected spectrum array shape {array.shape}")

    if len(power) == 0:
        raise DecodeError("Spectrum has no channels")

    try:
        return Spectrum(freqs, power, timestamp)
    except (TypeError, ValueError) as e:
        raise DecodeError(str(e)) from e


def load_autospectra(path, nspectra: int) -> List[Tuple[str, Spectrum]]:
    """
    Loads an RFI monitor dump for the static viewer.

    The file holds one row per correlator input. Rows that are all NaN or
    non-positive are skipped and the first ``2 * nspectra`` remaining rows are
    returned, named 0A, 0B, 1A, 1B, ...
    """
    path = Path(path)
    timestamp = path.stat().st_mtime
    data = decode_npy(path.read_bytes())
    if data.ndim != 2:
        raise DecodeError(f"Expected a 2-D array in {path}, got shape {data.shape}")

    freqs = np.linspace(DEFAULT_FREQ_MIN, DEFAULT_FREQ_MAX, data.shape[1])
    result = []
    with np.errstate(invalid="ignore"):
        for row in data:
            if len(result) >= 2 * nspectra:
                break
            if not np.any(row > 0):
                continue
            count = len(result)
            name = f"{count // 2}{'A' if count % 2 == 0 else 'B'}"
            result.append((name, Spectrum(freqs, row, timestamp)))

    logging.info(f"Loaded {len(result)} spectra from {path}")
    return result


class SpectrumSource(abc.ABC):
    """Anything that can produce the latest autospectrum for a named antenna."""

    name = "source"

    @abc.abstractmethod
    async def fetch(self, antenna: str) -> Spectrum:
        """Returns one snapshot for ``antenna`` or raises a FetchError."""

    def describe(self) -> str:
        return self.name


def _check_name(antenna: str):
    if not antenna or antenna in (".", "..") or "/" in antenna or "\0" in antenna:
        raise AntennaNotFound(f"Invalid antenna name {antenna!r}")


class NpyDirectorySource(SpectrumSource):
    """Reads ``<directory>/<antenna>.npy``; the file mtime is the capture time."""

    name = "npy-dir"

    def __init__(self, directory):
        self.directory = Path(directory)

    def path_for(self, antenna: str) -> Path:
        _check_name(antenna)
        return self.directory / f"{antenna}.npy"

    async def fetch(self, antenna: str) -> Spectrum:
        path = self.path_for(antenna)
        return await asyncio.to_thread(self._read, antenna, path)

    def _read(self, antenna: str, path: Path) -> Spectrum:
        try:
            timestamp = os.stat(path).st_mtime
            payload = path.read_bytes()
        except FileNotFoundError:
            raise AntennaNotFound(f"No spectrum file for {antenna} at {path}") from None
        except OSError as e:
            raise SourceUnavailable(f"Unable to read {path}: {e}") from e
        return spectrum_from_array(decode_npy(payload), timestamp)

    def describe(self) -> str:
        return str(self.directory)


class RemoteFileSource(SpectrumSource):
    """
    Fetches ``<directory>/<antenna>.npy`` from a remote host over ssh.

    The remote command prints the file mtime on the first line followed by the
    raw file contents, so one round trip yields both payload and timestamp.
    """

    name = "ssh"

    def __init__(self, host: str, directory, ssh: str = "ssh"):
        self.host = host
        self.directory = str(directory)
        self.ssh = ssh

    def command_for(self, antenna: str) -> List[str]:
        _check_name(antenna)
        path = shlex.quote(f"{self.directory.rstrip('/')}/{antenna}.npy")
        return [self.ssh, "-o", "BatchMode=yes", self.host, f"stat -c %Y {path} && cat {path}"]

    async def fetch(self, antenna: str) -> Spectrum:
        command = self.command_for(antenna)
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SourceUnavailable(f"Unable to run {self.ssh}: {e}") from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip()
            if "No such file" in message:
                raise AntennaNotFound(f"No spectrum file for {antenna} on {self.host}")
            raise SourceUnavailable(f"{self.host}: {message or f'exit status {proc.returncode}'}")

        return self.parse_response(stdout)

    @staticmethod
    def parse_response(stdout: bytes) -> Spectrum:
        header, _, payload = stdout.partition(b"\n")
        try:
            timestamp = float(header.strip())
        except ValueError:
            raise DecodeError(f"Bad timestamp line {header[:40]!r}") from None
        return spectrum_from_array(decode_npy(payload), timestamp)

    def describe(self) -> str:
        return f"{self.host}:{self.directory}"
