"""Consistent hashing: load balance vs virtual nodes per server.

Places the same keys on rings built with an increasing number of virtual
nodes per server, then adds one server and counts how many keys move.

Demonstrates:
1. More virtual nodes flatten the per-server load.
2. Adding a server moves roughly ``1 / (n + 1)`` of the keys, all of
   them onto the new server.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from distlab import ConsistentHashingEngine


def run(servers: int, keys: int, virtual_node_counts: list[int]) -> pd.DataFrame:
    rows = []
    for vnodes in virtual_node_counts:
        ring = ConsistentHashingEngine(server_count=servers, virtual_nodes=vnodes)
        ring.add_random_keys(keys)
        stats = ring.stats
        moved = ring.add_server(f"server-{servers}")
        rows.append({
            "virtual_nodes": vnodes,
            "min_load": stats.min,
            "max_load": stats.max,
            "std_dev": stats.std_dev,
            "imbalance": stats.imbalance,
            "moved_on_join": moved,
            "moved_fraction": moved / keys,
        })
    return pd.DataFrame(rows)


def visualize_results(df: pd.DataFrame, servers: int, output_dir: Path) -> None:
    import matplotlib.pyplot as plt

    output_dir.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(1, 2, figsize=(14, 5))

    ax = axes[0]
    ax.plot(df["virtual_nodes"], df["std_dev"], marker="o", color="steelblue", label="std dev")
    ax.fill_between(df["virtual_nodes"], df["min_load"], df["max_load"], color="steelblue", alpha=0.15,
                    label="min..max load")
    ax.set_xscale("log")
    ax.set_xlabel("Virtual nodes per server")
    ax.set_ylabel("Keys per server")
    ax.set_title("Load Spread")
    ax.legend()
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    ax.bar(df["virtual_nodes"].astype(str), df["moved_fraction"], color="seagreen")
    ax.axhline(1 / (servers + 1), color="indianred", linestyle="--", label="ideal 1/(n+1)")
    ax.set_xlabel("Virtual nodes per server")
    ax.set_ylabel("Fraction of keys moved")
    ax.set_title("Keys Moved When a Server Joins")
    ax.legend()
    ax.grid(True, alpha=0.3, axis="y")

    fig.suptitle("Consistent Hashing", fontsize=14, fontweight="bold")
    fig.tight_layout()
    fig.savefig(output_dir / "consistent_hashing_load.png", dpi=150)
    plt.close(fig)
    print(f"Saved: {output_dir / 'consistent_hashing_load.png'}")


if __name__ == "__main__":
    import argparse

    import matplotlib

    parser = argparse.ArgumentParser(description="Consistent hashing load balance")
    parser.add_argument("--servers", type=int, default=5, help="Initial server count")
    parser.add_argument("--keys", type=int, default=2000, help="Keys to place")
    parser.add_argument("--output", type=str, default="output/consistent_hashing", help="Output directory")
    parser.add_argument("--no-viz", action="store_true", help="Skip visualization")
    args = parser.parse_args()

    df = run(args.servers, args.keys, [1, 2, 5, 10, 25, 50, 100])
    print(df.to_string(index=False, float_format=lambda v: f"{v:.3f}"))

    if not args.no_viz:
        matplotlib.use("Agg")
        visualize_results(df, args.servers, Path(args.output))
