from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest


@pytest.fixture
def write_log() -> Callable[[Path, list[str]], None]:
    def _write(path: Path, lines: list[str]) -> None:
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    return _write


@pytest.fixture
def cms_log_lines() -> list[str]:
    return [
        "Java HotSpot(TM) 64-Bit Server VM (25.102-b14) for linux-amd64 JRE (1.8.0_102-b14), "
        'built on Jun 22 2016 18:43:17 by "java_re" with gcc 4.3.0 20080428 (Red Hat 4.3.0-8)',
        "Memory: 4k page, physical 65689508k(15964104k free), swap 4194300k(4194300k free)",
        "CommandLine flags: -XX:+PrintGC -XX:+PrintGCDetails -XX:+UseConcMarkSweepGC -Xmx2g",
        "2210.281: [GC 2210.282: [ParNew2210.314: [CMS-concurrent-abortable-preclean: "
        "0.043/0.144 secs] [Times: user=0.13 sys=0.00, real=0.14 secs]",
        ": 212981K->3156K(242304K), 0.0364435 secs] 4712182K->4502357K(4971420K), "
        "0.0368807 secs] [Times: user=0.18 sys=0.02, real=0.04 secs]",
        "Total time for which application threads were stopped: 0.0370000 seconds",
        "2211.000: [GC [1 CMS-initial-mark: 4499201K(4729116K)] 4600000K(4971420K), "
        "0.0174433 secs]",
        "2211.018: [CMS-concurrent-mark-start]",
        "2212.500: [CMS-concurrent-mark: 1.482/1.482 secs]",
        "",
        "2215.000: [Full GC 2215.000: [CMS: 4499201K->1200000K(4729116K), 4.4628626 secs] "
        "4700000K->1200000K(4971420K), [CMS Perm : 13140K->13124K(131072K)], 4.4630000 secs]",
        "this is not a gc line",
    ]


@pytest.fixture
def parallel_log_lines() -> list[str]:
    return [
        "10.000: [GC [PSYoungGen: 27808K->632K(28032K)] 160183K->133159K(585088K), "
        "0.0225213 secs]",
        "20.000: [GC [PSYoungGen: 27808K->632K(28032K)] 160183K->133159K(585088K), "
        "0.0225213 secs]",
    ]


@pytest.fixture
def g1_details_lines() -> list[str]:
    return [
        "2.192: [GC pause (G1 Evacuation Pause) (young), 0.0209631 secs]",
        "   [Parallel Time: 19.4 ms, GC Workers: 4]",
        "      [GC Worker Start (ms): Min: 2192.2, Avg: 2192.2, Max: 2192.3, Diff: 0.1]",
        "   [Code Root Fixup: 0.0 ms]",
        "   [Eden: 128.0M(128.0M)->0.0B(112.0M) Survivors: 0.0B->16.0M "
        "Heap: 128.0M(2048.0M)->16.6M(2048.0M)]",
        " [Times: user=0.08 sys=0.00, real=0.02 secs]",
        "2.500: [GC concurrent-root-region-scan-start]",
    ]
