import argparse
import time

import config_core as cfg
from geometry_core import analyze_mesh
from mesh_core import read_stl_file
from pricing_core import calculate_price


def _bench_file(path: str, repeat: int) -> None:
    materials = cfg.default_materials()
    machines = cfg.default_machines()
    pricing = cfg.default_pricing()
    tier = cfg.post_processing_tiers(pricing)["basic"]
    operating = cfg.operating_costs_from_pricing(pricing)
    material = materials[sorted(materials)[0]]
    machine = machines[sorted(machines)[0]]

    t_decode = t_analyze = t_price = 0.0
    for _ in range(repeat):
        started = time.perf_counter()
        mesh = read_stl_file(path)
        t1 = time.perf_counter()
        metrics = analyze_mesh(mesh)
        t2 = time.perf_counter()
        price = calculate_price(metrics, material, machine, tier, operating=operating)
        t3 = time.perf_counter()
        t_decode += t1 - started
        t_analyze += t2 - t1
        t_price += t3 - t2
    print(
        f"stl file={path} triangles={mesh.triangle_count} "
        f"volume_cm3={metrics.volume:.6f} total={price.total:.2f} "
        f"decode_s={t_decode / repeat:.6f} analyze_s={t_analyze / repeat:.6f} price_s={t_price / repeat:.6f}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark decode + analysis + pricing for binary STL files.")
    parser.add_argument("files", nargs="+", help="Paths to binary STL files.")
    parser.add_argument("--repeat", type=int, default=3, help="Repetitions per file.")
    args = parser.parse_args()

    for path in args.files:
        _bench_file(path, max(1, args.repeat))


if __name__ == "__main__":
    main()
