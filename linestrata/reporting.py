"""
User-facing progress output and run instrumentation.

- ProgressReporter: stage banners, messages and progress bars
  (colorama for colors, tqdm for bars)
- MemoryMonitor: RSS sampling and limit enforcement through psutil
- ProfilingContext: optional cProfile around a run
- PerformanceMetrics: counters collected while analyzing
"""

import cProfile
import io
import os
import pstats
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import psutil
from colorama import Fore, Style
from colorama import init as colorama_init
from tqdm import tqdm

colorama_init(autoreset=True)


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Interactive progress reporting.

    Quiet mode suppresses everything except errors; verbose mode adds the
    per-stage statistics.
    """

    def __init__(self, quiet: bool = False, verbose: bool = False, use_colors: bool = True):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.start_time = time.time()
        self.stage_times: Dict[str, float] = {}

    def _colorize(self, text: str, color: str) -> str:
        """Apply color if enabled"""
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        """Mark the start of a processing stage"""
        self.stage_times[stage_name] = time.time()
        if self.quiet:
            return

        separator = self._colorize("=" * 70, Fore.CYAN)
        stage_text = self._colorize(f"🔄 {stage_name}", Fore.BLUE + Style.BRIGHT)

        print(f"\n{separator}")
        print(stage_text)
        if message:
            print(f"   {message}")
        print(separator)

    def stage_complete(self, stage_name: str, stats: Optional[Dict] = None):
        """Mark completion of a processing stage"""
        if self.quiet:
            return
        elapsed = time.time() - self.stage_times.get(stage_name, time.time())

        complete_text = self._colorize(
            f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
        )
        print(complete_text)

        if stats and self.verbose:
            for key, value in stats.items():
                print(f"   {key}: {value}")

    def create_progress_bar(self, total: int, desc: str = "Processing", unit: str = " commits") -> Optional[tqdm]:
        """Create a progress bar with ETA; None in quiet mode."""
        if self.quiet:
            return None

        return tqdm(
            total=total,
            desc=self._colorize(desc, Fore.CYAN),
            unit=unit,
            ncols=100,
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]",
        )

    def info(self, message: str):
        """Display informational message"""
        if not self.quiet:
            info_text = self._colorize("ℹ️  ", Fore.BLUE)
            print(f"{info_text}{message}")

    def warning(self, message: str):
        """Display warning message"""
        if not self.quiet:
            warning_text = self._colorize("⚠️  ", Fore.YELLOW + Style.BRIGHT)
            print(f"{warning_text}{message}")

    def error(self, message: str):
        """Display error message (always shown)"""
        error_text = self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT)
        print(error_text, file=sys.stderr)

    def success(self, message: str):
        """Display success message"""
        if not self.quiet:
            success_text = self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT)
            print(success_text)

    def summary(self, stats: Dict[str, Any]):
        """Display final summary"""
        if self.quiet:
            return
        elapsed = time.time() - self.start_time

        separator = self._colorize("=" * 70, Fore.CYAN)
        header = self._colorize("📊 ATTRIBUTION SUMMARY", Fore.MAGENTA + Style.BRIGHT)

        print(f"\n{separator}")
        print(header)
        print(separator)
        for key, value in stats.items():
            print(f"   {key}: {value}")

        time_text = self._colorize(f"⏱️  Total time: {elapsed:.2f}s", Fore.YELLOW)
        print(f"\n{time_text}")
        print(f"{separator}\n")


# ============================================================================
# PERFORMANCE
# ============================================================================


class MemoryMonitor:
    """Monitor memory usage and enforce limits"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0
        self._process = psutil.Process(os.getpid())

    def check_memory(self) -> float:
        """
        Current RSS in MB.

        Raises:
            MemoryError: If the configured limit is exceeded
        """
        memory_mb = self._process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB")

        return memory_mb

    def get_peak(self) -> float:
        return self.peak_mb


class ProfilingContext:
    """Context manager for performance profiling"""

    def __init__(self, enabled: bool = False, output_path: Optional[str] = None):
        self.enabled = enabled
        self.output_path = output_path
        self.profiler = None

    def __enter__(self):
        if self.enabled:
            self.profiler = cProfile.Profile()
            self.profiler.enable()
        return self

    def __exit__(self, *args):
        if self.enabled and self.profiler:
            self.profiler.disable()

            if self.output_path:
                self.profiler.dump_stats(self.output_path)

            s = io.StringIO()
            ps = pstats.Stats(self.profiler, stream=s)
            ps.strip_dirs()
            ps.sort_stats("cumulative")
            ps.print_stats(20)
            print(f"\n{'='*70}")
            print("PERFORMANCE PROFILE (Top 20 functions by cumulative time)")
            print(f"{'='*70}")
            print(s.getvalue())


@dataclass
class PerformanceMetrics:
    """Counters and timings of one analysis run."""

    commits_processed: int = 0
    files_classified: int = 0
    lines_attributed: int = 0
    stage_times: Dict[str, float] = field(default_factory=dict)
    memory_peak_mb: float = 0.0
    total_time: float = 0.0
    blob_cache_hits: int = 0
    blob_cache_misses: int = 0

    def to_dict(self) -> Dict:
        cache_total = self.blob_cache_hits + self.blob_cache_misses
        cache_hit_rate = (self.blob_cache_hits / cache_total * 100) if cache_total > 0 else 0

        return {
            "commits_processed": self.commits_processed,
            "files_classified": self.files_classified,
            "lines_attributed": self.lines_attributed,
            "stage_times": {k: round(v, 3) for k, v in self.stage_times.items()},
            "memory_peak_mb": round(self.memory_peak_mb, 2),
            "total_time_seconds": round(self.total_time, 2),
            "cache_statistics": {
                "hits": self.blob_cache_hits,
                "misses": self.blob_cache_misses,
                "hit_rate_percent": round(cache_hit_rate, 1),
            },
        }
