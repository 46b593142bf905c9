"""
Resource limit translation.

Converts human-readable limits into the units backends expect:
- Memory: "512m", "1g", "2048" -> bytes (Docker mem_limit)
- CPU: "0.5", "2" -> nano-CPUs (Docker nano_cpus)
- Both -> Kubernetes quantity strings

Parsers are lenient by default (malformed input yields 0, meaning "no
limit" to the caller) and strict on request (malformed input raises
ValueError). The orchestrators always parse strictly so a typo never
silently removes a limit.
"""

import re
from typing import Optional

MEMORY_MULTIPLIERS = {
    'k': 1024,
    'm': 1024 * 1024,
    'g': 1024 * 1024 * 1024,
}

NANO_CPUS_PER_CORE = 1_000_000_000

_INTEGER_PATTERN = re.compile(r'^\d+$')
_DECIMAL_PATTERN = re.compile(r'^(\d+(\.\d*)?|\.\d+)$')


def parse_memory(value: Optional[str], strict: bool = False) -> int:
    """
    Parse a memory limit string into bytes.

    Suffixes are case-insensitive binary multiples: k (1024), m (1024^2),
    g (1024^3). No suffix means raw bytes.

    Args:
        value: Memory string such as "512m", "1G", "2048"
        strict: Raise instead of returning 0 on malformed input

    Returns:
        Byte count

    Raises:
        ValueError: In strict mode, if the numeric part is not an integer

    Examples:
        >>> parse_memory("512m")
        536870912
        >>> parse_memory("1g")
        1073741824
    """
    mem = (value or '').strip().lower()

    multiplier = 1
    if mem and mem[-1] in MEMORY_MULTIPLIERS:
        multiplier = MEMORY_MULTIPLIERS[mem[-1]]
        mem = mem[:-1].strip()

    if not _INTEGER_PATTERN.match(mem):
        if strict:
            raise ValueError(f"Invalid memory limit: '{value}'")
        return 0

    return int(mem) * multiplier


def parse_cpus(value: Optional[str], strict: bool = False) -> int:
    """
    Parse a CPU limit (fraction of one core) into nano-CPUs.

    Args:
        value: CPU string such as "0.5" or "2"
        strict: Raise instead of returning 0 on malformed input

    Returns:
        Nano-CPU count (1 core = 1_000_000_000)

    Raises:
        ValueError: In strict mode, if the value is not a non-negative decimal

    Examples:
        >>> parse_cpus("0.5")
        500000000
    """
    cpus = (value or '').strip()

    if not _DECIMAL_PATTERN.match(cpus):
        if strict:
            raise ValueError(f"Invalid CPU limit: '{value}'")
        return 0

    return int(round(float(cpus) * NANO_CPUS_PER_CORE))


def to_k8s_memory(memory_bytes: int) -> str:
    """Express a byte count as a Kubernetes quantity ("536870912" -> "512Mi")."""
    for suffix, factor in (('Gi', 1024 ** 3), ('Mi', 1024 ** 2), ('Ki', 1024)):
        if memory_bytes >= factor and memory_bytes % factor == 0:
            return f"{memory_bytes // factor}{suffix}"
    return str(memory_bytes)


def to_k8s_cpu(nano_cpus: int) -> str:
    """Express nano-CPUs as a Kubernetes millicore quantity (500000000 -> "500m")."""
    millicores = max(1, nano_cpus // 1_000_000)
    return f"{millicores}m"
