"""Sweep every even chunking of a batch of items and report expected scan cost."""

from dataclasses import dataclass
from fractions import Fraction
from typing import List, Optional, Sequence
import argparse
import logging
import time

from estimate_ops import (
    MAX_SAMPLED_DENOMINATOR,
    OCCUPANCY_MODELS,
    analytic_expectation,
    as_probability,
    chunking_seeds,
    defect_probability,
    divisors,
    monte_carlo_expectation,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepRow:
    chunks: int
    chunk_size: int
    analytic: Fraction
    monte_carlo: Optional[Fraction] = None


def format_line(chunks: int, chunk_size: int, ops: Fraction, suffix: str = "", exact: bool = False) -> str:
    line = f"{chunks:>4} chunks ({chunk_size:>4} items/chunk) -> {float(ops):.1f} ops"
    if exact:
        line += f" [{ops}]"
    if suffix:
        line += f" {suffix}"
    return line


def sweep(
    items: int,
    p: Fraction,
    mc_samples: Optional[int] = None,
    model: str = "independent",
    seed: Optional[int] = None,
) -> List[SweepRow]:
    """Compute the analytic (and optionally sampled) cost for every divisor of items."""
    rows: List[SweepRow] = []
    chunk_counts = divisors(items)
    # Each chunking samples from its own stream so the rows are independent
    streams = chunking_seeds(seed, len(chunk_counts))
    for chunks, stream in zip(chunk_counts, streams):
        chunk_size = items // chunks
        started = time.perf_counter()
        analytic = analytic_expectation(items, chunks, p, model=model)
        logger.debug("%d chunks: analytic %s in %.3fs", chunks, model, time.perf_counter() - started)

        monte_carlo = None
        if mc_samples is not None:
            started = time.perf_counter()
            monte_carlo = monte_carlo_expectation(items, chunk_size, p, mc_samples, seed=stream)
            logger.debug(
                "%d chunks: %d samples in %.3fs", chunks, mc_samples, time.perf_counter() - started
            )
        rows.append(SweepRow(chunks, chunk_size, analytic, monte_carlo))
    return rows


def best_row(rows: Sequence[SweepRow]) -> SweepRow:
    """Cheapest chunking by analytic cost; ties go to fewer chunks."""
    return min(rows, key=lambda row: (row.analytic, row.chunks))


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Expected operations of a chunked defect scan for every even chunking",
    )
    parser.add_argument("items", type=int, help="Number of items scanned")
    parser.add_argument(
        "expected_defects",
        type=int,
        help="Expected number of defective items; the defect rate is expected_defects / items",
    )
    parser.add_argument(
        "--probability",
        default=None,
        help="Per-item defect probability as a decimal or ratio (e.g. 0.05 or 1/12); overrides expected_defects",
    )
    parser.add_argument(
        "--mc-samples",
        type=int,
        default=None,
        help="Also estimate each chunking by Monte Carlo with this many samples",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for Monte Carlo sampling")
    parser.add_argument(
        "--model",
        choices=OCCUPANCY_MODELS,
        default="independent",
        help="Chunk occupancy model for the analytic expectation (default: independent)",
    )
    parser.add_argument("--exact", action="store_true", help="Also print exact rational results")
    parser.add_argument("--verbose", action="store_true", help="Log timings to stderr")
    args = parser.parse_args(argv)

    if args.items < 1:
        parser.error(f"items must be positive, got {args.items}")
    if not 0 <= args.expected_defects <= args.items:
        parser.error(f"expected_defects must be between 0 and {args.items}, got {args.expected_defects}")
    if args.mc_samples is not None and args.mc_samples < 1:
        parser.error(f"--mc-samples must be positive, got {args.mc_samples}")

    if args.probability is None:
        args.p = defect_probability(args.items, args.expected_defects)
    else:
        try:
            p = Fraction(args.probability)
        except (ValueError, ZeroDivisionError):
            parser.error(f"--probability is not a number: {args.probability!r}")
        if not 0 <= p <= 1:
            parser.error(f"--probability must be between 0 and 1, got {args.probability}")
        args.p = as_probability(p)
    if args.mc_samples is not None and args.p.denominator > MAX_SAMPLED_DENOMINATOR:
        parser.error(
            f"--probability {args.probability} is too fine for Monte Carlo sampling; "
            f"its denominator must not exceed {MAX_SAMPLED_DENOMINATOR}"
        )
    return args


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("items=%d p=%s model=%s seed=%s", args.items, args.p, args.model, args.seed)

    rows = sweep(args.items, args.p, mc_samples=args.mc_samples, model=args.model, seed=args.seed)
    for row in rows:
        print(format_line(row.chunks, row.chunk_size, row.analytic, exact=args.exact))
        if row.monte_carlo is not None:
            print(format_line(row.chunks, row.chunk_size, row.monte_carlo, "by monte carlo", exact=args.exact))

    best = best_row(rows)
    print(f"best: {best.chunks} chunks ({best.chunk_size} items/chunk) -> {float(best.analytic):.1f} ops")


if __name__ == "__main__":
    main()
