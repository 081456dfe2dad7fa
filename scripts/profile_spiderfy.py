"""
Profiling script for PyOMS spiderfier performance analysis.

This script profiles marker scenarios of growing size to identify bottlenecks
in proximity recomputation, spiderfying and unspiderfying.
"""

import cProfile
import pstats
import io
from pstats import SortKey
import time
import warnings

import numpy as np
from pyoms import LargeClusterWarning, ManualScheduler, OverlappingMarkerSpiderfier
from pyoms.surface import LatLng, SimpleMap, SimpleMarker


def create_markers(surface, n_markers, n_clusters, spread=0.5):
    """Create n markers, grouped in n_clusters piles of coincident markers and scattered noise."""
    np.random.seed(42)
    centers = [
        LatLng(51.5 + float(dlat), -0.1 + float(dlng))
        for dlat, dlng in np.random.uniform(-spread, spread, size=(n_clusters, 2))
    ]

    markers = []
    for i in range(n_markers):
        if i % 2 == 0 and centers:
            position = centers[i % len(centers)]
        else:
            dlat, dlng = np.random.uniform(-spread, spread, size=2)
            position = LatLng(51.5 + float(dlat), -0.1 + float(dlng))
        markers.append(SimpleMarker(position, surface))
    return markers


def build(n_markers, n_clusters):
    surface = SimpleMap(zoom=10)
    surface.idle()
    scheduler = ManualScheduler()
    oms = OverlappingMarkerSpiderfier(surface, scheduler=scheduler)
    markers = create_markers(surface, n_markers, n_clusters)
    for marker in markers:
        oms.track(marker)
    return oms, scheduler, markers


def profile_format_small():
    """Profile a status recomputation over 200 markers."""
    oms, scheduler, _ = build(200, 10)
    scheduler.run_all()


def profile_format_large():
    """Profile a status recomputation over 5000 markers."""
    oms, scheduler, _ = build(5000, 50)
    scheduler.run_all()


def profile_all_with_neighbors():
    """Profile repeated all_with_neighbors queries over 2000 markers."""
    oms, scheduler, _ = build(2000, 20)
    for _ in range(10):
        oms.all_with_neighbors()


def profile_spiderfy_cycle():
    """Profile clicking every cluster in turn, then collapsing."""
    oms, scheduler, markers = build(1000, 20)
    for marker in markers[:40:2]:
        oms.handle_marker_click(marker)
    oms.unspiderfy()


def profile_large_cluster():
    """Profile spiderfying one pile of 600 coincident markers."""
    surface = SimpleMap(zoom=10)
    surface.idle()
    oms = OverlappingMarkerSpiderfier(surface, scheduler=ManualScheduler())
    markers = [SimpleMarker(LatLng(51.5, -0.1), surface) for _ in range(600)]
    for marker in markers:
        oms.track(marker)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LargeClusterWarning)
        oms.handle_marker_click(markers[0])
    oms.unspiderfy()


def benchmark_scenario(name, func):
    """Benchmark a scenario and print timing."""
    print(f"\n{'='*60}")
    print(f"Profiling: {name}")
    print('='*60)

    profiler = cProfile.Profile()

    start_time = time.time()
    profiler.enable()
    func()
    profiler.disable()
    elapsed = time.time() - start_time

    print(f"\nTotal time: {elapsed:.3f}s")

    s = io.StringIO()
    ps = pstats.Stats(profiler, stream=s).sort_stats(SortKey.CUMULATIVE)
    ps.print_stats(20)

    print("\nTop 20 functions by cumulative time:")
    print(s.getvalue())

    return profiler


def main():
    """Run all profiling scenarios."""
    print("PyOMS Performance Profiling")
    print("=" * 60)

    scenarios = [
        ("Format (200 markers)", profile_format_small),
        ("Format (5000 markers)", profile_format_large),
        ("All With Neighbors (2000 markers x10)", profile_all_with_neighbors),
        ("Spiderfy Cycle (1000 markers, 20 clicks)", profile_spiderfy_cycle),
        ("Large Cluster (600 coincident markers)", profile_large_cluster),
    ]

    profilers = {}
    for name, func in scenarios:
        profilers[name] = benchmark_scenario(name, func)

    print("\n" + "="*60)
    print("Saving detailed profiles...")
    print("="*60)

    for name, profiler in profilers.items():
        filename = f"profile_{name.lower().replace(' ', '_').replace('(', '').replace(')', '').replace(',', '')}.prof"
        profiler.dump_stats(filename)
        print(f"Saved: {filename}")

    print("\nTo view detailed profile, use:")
    print("  python -m pstats <profile_file>")
    print("  then type 'stats' or 'sort cumulative' and 'stats 50'")


if __name__ == "__main__":
    main()
