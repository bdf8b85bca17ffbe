"""Binary trajectory frames.

A trajectory file is zero or more frames back-to-back, one per saved
population snapshot. Frame layout (little-endian):

    environment       u8   (platform-width unsigned, fixed to 8 bytes)
    agent_count       u8
    agent_count ×
        phenotype     u8
        weights       n_phe × f8
    step_delta        i4

n_phe is not stored; readers receive it from the run's parameters. The
explicit agent_count makes each frame self-delimiting.

Usage:
    with TrajectoryWriter("traj.bin") as writer:
        writer.append(snapshot)

    for snap in iter_frames("traj.bin", n_phe=2):
        ...
"""

from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional, Union

import numpy as np

from phenoevo.errors import AgentInvalid, SerializationError
from phenoevo.population import mean_inheritance_weights, phenotype_counts
from phenoevo.types import PopulationSnapshot, make_agent


# ═══════════════════════════════════════════════════════════════════════
# FRAME DTYPES
# ═══════════════════════════════════════════════════════════════════════

HEADER_DTYPE = np.dtype([
    ('environment', '<u8'),
    ('agent_count', '<u8'),
])
DELTA_DTYPE = np.dtype('<i4')

_READ_CHUNK = 1 << 20

_I4_MIN = int(np.iinfo(np.int32).min)
_I4_MAX = int(np.iinfo(np.int32).max)


def agent_record_dtype(n_phe: int) -> np.dtype:
    """On-disk record for one agent in a model with n_phe phenotypes."""
    return np.dtype([
        ('phenotype', '<u8'),
        ('weights', '<f8', (n_phe,)),
    ])


def frame_size(n_agents: int, n_phe: int) -> int:
    """Size in bytes of a frame holding n_agents agents."""
    return (HEADER_DTYPE.itemsize
            + n_agents * agent_record_dtype(n_phe).itemsize
            + DELTA_DTYPE.itemsize)


# ═══════════════════════════════════════════════════════════════════════
# ENCODE / DECODE
# ═══════════════════════════════════════════════════════════════════════

def encode_frame(snapshot: PopulationSnapshot) -> bytes:
    """Serialize one snapshot to frame bytes."""
    if snapshot.environment < 0:
        raise SerializationError(
            f"environment must be non-negative, got {snapshot.environment}"
        )
    if not _I4_MIN <= snapshot.step_delta <= _I4_MAX:
        raise SerializationError(
            f"step_delta {snapshot.step_delta} does not fit in 4 bytes"
        )
    n_agents = snapshot.n_agents
    body = b''
    if n_agents:
        n_phe = snapshot.agents[0].n_phe
        for i, agent in enumerate(snapshot.agents):
            if agent.n_phe != n_phe:
                raise SerializationError(
                    f"agent {i} has {agent.n_phe} weights, expected {n_phe}"
                )
        records = np.zeros(n_agents, dtype=agent_record_dtype(n_phe))
        records['phenotype'] = [a.phenotype for a in snapshot.agents]
        records['weights'] = np.stack(
            [a.inheritance_weights for a in snapshot.agents]
        )
        body = records.tobytes()

    header = np.array([(snapshot.environment, n_agents)], dtype=HEADER_DTYPE)
    delta = np.array([snapshot.step_delta], dtype=DELTA_DTYPE)
    return header.tobytes() + body + delta.tobytes()


def write_frame(snapshot: PopulationSnapshot, sink: BinaryIO) -> int:
    """Append one frame to an open binary sink.

    Returns:
        Number of bytes written.

    Raises:
        SerializationError: If the snapshot cannot be encoded or the
            underlying write fails.
    """
    data = encode_frame(snapshot)
    try:
        sink.write(data)
    except (OSError, ValueError) as exc:
        raise SerializationError(f"failed to write frame: {exc}") from exc
    return len(data)


def _read_exact(source: BinaryIO, n_bytes: int, what: str) -> bytes:
    """Read exactly n_bytes, growing the buffer only as data arrives."""
    chunks = []
    remaining = n_bytes
    while remaining > 0:
        try:
            chunk = source.read(min(remaining, _READ_CHUNK))
        except OSError as exc:
            raise SerializationError(f"failed to read {what}: {exc}") from exc
        if not chunk:
            raise SerializationError(
                f"truncated frame: {what} needs {n_bytes} bytes, "
                f"got {n_bytes - remaining}"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def read_frame(source: BinaryIO, n_phe: int) -> Optional[PopulationSnapshot]:
    """Read one frame and re-validate every agent.

    Args:
        source: Open binary stream positioned at a frame boundary.
        n_phe: Number of phenotypes of the run that wrote the frame.

    Returns:
        The decoded snapshot, or None at a clean end of stream.

    Raises:
        SerializationError: On a truncated frame or an agent that fails
            validation.
    """
    try:
        first = source.read(HEADER_DTYPE.itemsize)
    except OSError as exc:
        raise SerializationError(f"failed to read frame header: {exc}") from exc
    if not first:
        return None
    head = first
    if len(head) < HEADER_DTYPE.itemsize:
        head += _read_exact(source, HEADER_DTYPE.itemsize - len(head),
                            "frame header")
    header = np.frombuffer(head, dtype=HEADER_DTYPE)[0]
    environment = int(header['environment'])
    n_agents = int(header['agent_count'])

    record_dtype = agent_record_dtype(n_phe)
    body = _read_exact(source, n_agents * record_dtype.itemsize,
                       f"{n_agents} agent records")
    records = np.frombuffer(body, dtype=record_dtype)

    agents = []
    for i in range(n_agents):
        try:
            agents.append(make_agent(int(records[i]['phenotype']),
                                     records[i]['weights'], n_phe))
        except AgentInvalid as exc:
            raise SerializationError(f"corrupt agent {i}: {exc}") from exc

    tail = _read_exact(source, DELTA_DTYPE.itemsize, "step_delta")
    step_delta = int(np.frombuffer(tail, dtype=DELTA_DTYPE)[0])

    return PopulationSnapshot(
        environment=environment,
        agents=agents,
        step_delta=step_delta,
    )


# ═══════════════════════════════════════════════════════════════════════
# FILE-LEVEL HELPERS
# ═══════════════════════════════════════════════════════════════════════

def iter_frames(path: Union[str, Path], n_phe: int) -> Iterator[PopulationSnapshot]:
    """Yield every frame of a trajectory file in order."""
    with open(path, 'rb') as f:
        while True:
            snap = read_frame(f, n_phe)
            if snap is None:
                return
            yield snap


def load_trajectory(path: Union[str, Path], n_phe: int) -> List[PopulationSnapshot]:
    """Read a whole trajectory file into memory."""
    return list(iter_frames(path, n_phe))


def count_frames(path: Union[str, Path], n_phe: int) -> int:
    """Number of complete frames in a trajectory file."""
    return sum(1 for _ in iter_frames(path, n_phe))


def save_frame_file(path: Union[str, Path], snapshot: PopulationSnapshot) -> Path:
    """Write a single-frame state file (overwrites)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, 'wb') as f:
            write_frame(snapshot, f)
    except OSError as exc:
        if isinstance(exc, SerializationError):
            raise
        raise SerializationError(f"cannot write {path}: {exc}") from exc
    return path


def load_frame_file(path: Union[str, Path], n_phe: int) -> PopulationSnapshot:
    """Read a single-frame state file written by ``save_frame_file``.

    Raises:
        SerializationError: If the file is empty or holds extra bytes.
    """
    with open(path, 'rb') as f:
        snap = read_frame(f, n_phe)
        if snap is None:
            raise SerializationError(f"{path} contains no frame")
        if f.read(1):
            raise SerializationError(
                f"{path} has trailing bytes after its frame "
                f"(wrong n_phe or not a single-frame file?)"
            )
    return snap


class TrajectoryWriter:
    """Appends frames to a trajectory file, flushing after each one.

    Frames already flushed stay valid if a later write fails or the run
    aborts.
    """

    def __init__(self, path: Union[str, Path], append: bool = False):
        self.path = Path(path)
        self.append_mode = append
        self.n_frames = 0
        self._file: Optional[BinaryIO] = None

    def open(self) -> 'TrajectoryWriter':
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._file = open(self.path, 'ab' if self.append_mode else 'wb')
        except OSError as exc:
            raise SerializationError(
                f"failed to open trajectory file {self.path}: {exc}"
            ) from exc
        return self

    def append(self, snapshot: PopulationSnapshot) -> int:
        """Write one frame and flush it. Returns bytes written."""
        if self._file is None:
            raise SerializationError(f"{self.path} is not open for writing")
        n_bytes = write_frame(snapshot, self._file)
        try:
            self._file.flush()
        except OSError as exc:
            raise SerializationError(f"failed to flush frame: {exc}") from exc
        self.n_frames += 1
        return n_bytes

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> 'TrajectoryWriter':
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def summarize_frame(snapshot: PopulationSnapshot, n_phe: int) -> dict:
    """Compact summary of one snapshot, suitable for JSON or printing."""
    return {
        'environment': snapshot.environment,
        'n_agents': snapshot.n_agents,
        'step_delta': snapshot.step_delta,
        'phenotype_counts': phenotype_counts(snapshot, n_phe).tolist(),
        'mean_weights': [
            round(float(w), 6)
            for w in mean_inheritance_weights(snapshot, n_phe)
        ],
    }
