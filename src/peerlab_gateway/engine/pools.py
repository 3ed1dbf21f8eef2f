"""Resource pools - immutable definitions of what the gateway can hand out.

Pools never track what is taken. Callers pass an occupancy snapshot read from
the store and get back the lowest free member in pool order.
"""

import ipaddress
import logging
from pathlib import Path
from typing import Iterable, Iterator

logger = logging.getLogger("peerlab_gateway.pools")

PREFIX_LENGTH = 48


def normalize_prefix(value: str) -> str:
    """Return the canonical text form of an IPv6 /48 network.

    Raises:
        ValueError: If value is not a valid IPv6 network with no host bits set,
            or is not a /48.
    """
    network = ipaddress.IPv6Network(value.strip(), strict=True)
    if network.prefixlen != PREFIX_LENGTH:
        raise ValueError(f"{value} is a /{network.prefixlen}, expected /{PREFIX_LENGTH}")
    return str(network)


class AsnPool:
    """Closed interval [start, end] of ASNs."""

    def __init__(self, start: int, end: int):
        if start > end:
            raise ValueError(f"ASN pool start ({start}) must not exceed end ({end})")
        self._start = start
        self._end = end
        logger.info(f"Created ASN pool: {start} - {end} ({self.size} ASNs)")

    @property
    def start(self) -> int:
        return self._start

    @property
    def end(self) -> int:
        return self._end

    @property
    def size(self) -> int:
        return self._end - self._start + 1

    def __contains__(self, asn: object) -> bool:
        return isinstance(asn, int) and self._start <= asn <= self._end

    def candidates(self, committed: Iterable[int]) -> Iterator[int]:
        """Yield every ASN absent from ``committed``, lowest first."""
        taken = set(committed)
        for asn in range(self._start, self._end + 1):
            if asn not in taken:
                yield asn

    def find_available(self, committed: Iterable[int]) -> int | None:
        """Return the lowest ASN absent from ``committed``, or None if exhausted."""
        asn = next(self.candidates(committed), None)
        if asn is None:
            logger.debug(f"No available ASNs in pool (all {self.size} ASNs assigned)")
        return asn

    def __repr__(self) -> str:
        return f"AsnPool({self._start}, {self._end})"


class PrefixPool:
    """Ordered list of distinct IPv6 /48 blocks."""

    def __init__(self, prefixes: Iterable[str]):
        self._prefixes = tuple(normalize_prefix(p) for p in prefixes)
        if len(set(self._prefixes)) != len(self._prefixes):
            raise ValueError("Prefix pool contains duplicate prefixes")

    @classmethod
    def parse(cls, lines: Iterable[str], source: str = "<memory>") -> "PrefixPool":
        """Build a pool from prefix-list lines.

        Blank lines and ``#`` comments are ignored. Lines that do not parse as
        an IPv6 /48, and repeats of an earlier prefix, are skipped with a
        warning rather than failing the whole load.
        """
        prefixes: list[str] = []
        seen: set[str] = set()

        for line_num, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            try:
                prefix = normalize_prefix(line)
            except ValueError as e:
                logger.warning(f"{source} line {line_num}: skipping '{line}': {e}")
                continue

            if prefix in seen:
                logger.warning(f"{source} line {line_num}: duplicate prefix {prefix}, skipping")
                continue

            seen.add(prefix)
            prefixes.append(prefix)

        return cls(prefixes)

    @classmethod
    def from_file(cls, path: str | Path) -> "PrefixPool":
        """Load a pool from a flat file with one /48 per line.

        Raises:
            OSError: If the file cannot be read.
        """
        path = Path(path)
        with path.open("r", encoding="utf-8") as handle:
            pool = cls.parse(handle, source=str(path))
        logger.info(f"Loaded {len(pool)} prefixes from {path}")
        return pool

    def __len__(self) -> int:
        return len(self._prefixes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._prefixes)

    def __contains__(self, prefix: object) -> bool:
        if not isinstance(prefix, str):
            return False
        try:
            return normalize_prefix(prefix) in self._prefixes
        except ValueError:
            return False

    def candidates(self, active: Iterable[str]) -> Iterator[str]:
        """Yield every prefix not held by an active lease, in file order."""
        leased = set()
        for prefix in active:
            try:
                leased.add(normalize_prefix(prefix))
            except ValueError:
                logger.warning(f"Ignoring unparseable leased prefix {prefix!r}")
        for prefix in self._prefixes:
            if prefix not in leased:
                yield prefix

    def find_available(self, active: Iterable[str]) -> str | None:
        """Return the first prefix not held by an active lease, or None."""
        prefix = next(self.candidates(active), None)
        if prefix is None:
            logger.debug(f"No available prefixes in pool (all {len(self)} leased)")
        return prefix

    def __repr__(self) -> str:
        return f"PrefixPool({len(self._prefixes)} prefixes)"
