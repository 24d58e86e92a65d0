"""Gossip convergence: push vs pull vs push-pull.

One node writes a key, then every node gossips with ``fanout`` random
peers per round. The chart shows how many nodes still miss the newest
version after each round, for each exchange direction.

Demonstrates:
1. Push spreads fast early and slowly at the end.
2. Pull is slow early and fast at the end.
3. Push-pull combines both and converges in the fewest rounds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from distlab import GossipEngine


@dataclass
class ModeResult:
    mode: str
    divergent_per_round: list[int] = field(default_factory=list)

    @property
    def rounds_to_converge(self) -> int | None:
        for i, divergent in enumerate(self.divergent_per_round):
            if divergent == 0:
                return i
        return None


def run_mode(mode: str, node_count: int, fanout: int, max_rounds: int, seed: int) -> ModeResult:
    gossip = GossipEngine(node_count=node_count, seed=seed)
    gossip.set_value("N0", "config", "v1")
    result = ModeResult(mode, [gossip.stats.divergent_nodes])

    for _ in range(max_rounds):
        gossip.gossip_round(mode, fanout=fanout)
        gossip.deliver_all()
        result.divergent_per_round.append(gossip.stats.divergent_nodes)
        if result.divergent_per_round[-1] == 0:
            break
    return result


def print_summary(results: list[ModeResult]) -> None:
    print("\n" + "=" * 50)
    print("GOSSIP CONVERGENCE")
    print("=" * 50)
    for result in results:
        rounds = result.rounds_to_converge
        print(f"  {result.mode:<10} {'did not converge' if rounds is None else f'{rounds} rounds'}")
    print("=" * 50)


def visualize_results(results: list[ModeResult], output_dir: Path) -> None:
    import matplotlib.pyplot as plt

    output_dir.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(9, 5))

    for result, color in zip(results, ["steelblue", "seagreen", "indianred"]):
        ax.plot(range(len(result.divergent_per_round)), result.divergent_per_round,
                marker="o", color=color, label=result.mode)

    ax.set_xlabel("Gossip round")
    ax.set_ylabel("Nodes missing the newest version")
    ax.set_title("Gossip Convergence by Exchange Mode")
    ax.legend()
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    fig.savefig(output_dir / "gossip_convergence.png", dpi=150)
    plt.close(fig)
    print(f"Saved: {output_dir / 'gossip_convergence.png'}")


if __name__ == "__main__":
    import argparse

    import matplotlib

    parser = argparse.ArgumentParser(description="Gossip convergence by exchange mode")
    parser.add_argument("--nodes", type=int, default=32, help="Cluster size")
    parser.add_argument("--fanout", type=int, default=1, help="Peers contacted per node per round")
    parser.add_argument("--rounds", type=int, default=30, help="Maximum rounds")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--output", type=str, default="output/gossip_convergence", help="Output directory")
    parser.add_argument("--no-viz", action="store_true", help="Skip visualization")
    args = parser.parse_args()

    results = [run_mode(mode, args.nodes, args.fanout, args.rounds, args.seed) for mode in ("push", "pull", "push-pull")]
    print_summary(results)

    if not args.no_viz:
        matplotlib.use("Agg")
        visualize_results(results, Path(args.output))
