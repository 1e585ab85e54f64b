"""
Tests for the chunk sweep command-line tool
"""

from fractions import Fraction

import pytest

from chunk_sweep import SweepRow, best_row, format_line, main, parse_args, sweep


class TestFormatLine:

    def test_analytic_line(self):
        line = format_line(3, 4, Fraction(11279, 1728))
        assert line == "   3 chunks (   4 items/chunk) -> 6.5 ops"

    def test_monte_carlo_suffix(self):
        line = format_line(12, 1, Fraction(13), "by monte carlo")
        assert line == "  12 chunks (   1 items/chunk) -> 13.0 ops by monte carlo"

    def test_exact(self):
        line = format_line(1, 2, Fraction(5, 2), exact=True)
        assert line.endswith("-> 2.5 ops [5/2]")


class TestSweep:

    def test_covers_every_divisor_including_items(self):
        rows = sweep(12, Fraction(1, 12))
        assert [row.chunks for row in rows] == [1, 2, 3, 4, 6, 12]
        assert [row.chunk_size for row in rows] == [12, 6, 4, 3, 2, 1]
        assert all(row.monte_carlo is None for row in rows)

    def test_baseline_row(self):
        rows = {row.chunks: row for row in sweep(12, Fraction(1, 12))}
        assert rows[3].analytic == Fraction(11279, 1728)

    def test_models_agree(self):
        independent = sweep(12, Fraction(1, 12))
        placement = sweep(12, Fraction(1, 12), model="placement")
        assert [row.analytic for row in independent] == [row.analytic for row in placement]

    def test_monte_carlo_rows(self):
        rows = sweep(6, Fraction(1), mc_samples=10, seed=3)
        assert [row.monte_carlo for row in rows] == [row.analytic for row in rows]

    def test_monte_carlo_rows_reproducible(self):
        first = sweep(12, Fraction(1, 4), mc_samples=200, seed=8)
        second = sweep(12, Fraction(1, 4), mc_samples=200, seed=8)
        assert [row.monte_carlo for row in first] == [row.monte_carlo for row in second]

    def test_each_chunking_gets_its_own_stream(self, monkeypatch):
        seen = []

        def record(items, chunk_size, p, sample_count, seed=None):
            seen.append(seed)
            return Fraction(0)

        monkeypatch.setattr("chunk_sweep.monte_carlo_expectation", record)
        sweep(12, Fraction(1, 4), mc_samples=10, seed=8)
        assert len(seen) == 6
        states = {tuple(stream.generate_state(4)) for stream in seen}
        assert len(states) == 6

    def test_best_row(self):
        rows = sweep(12, Fraction(1, 12))
        assert best_row(rows).chunks == 3

    def test_best_row_tie_prefers_fewer_chunks(self):
        rows = [SweepRow(4, 1, Fraction(2)), SweepRow(2, 2, Fraction(2))]
        assert best_row(rows).chunks == 2


class TestParseArgs:

    def test_defaults(self):
        args = parse_args(["12", "1"])
        assert args.items == 12
        assert args.p == Fraction(1, 12)
        assert args.mc_samples is None
        assert args.model == "independent"
        assert not args.exact

    def test_probability_override(self):
        args = parse_args(["100", "0", "--probability", "0.05"])
        assert args.p == Fraction(1, 20)

    def test_probability_ratio(self):
        assert parse_args(["12", "0", "--probability", "1/12"]).p == Fraction(1, 12)

    def test_fine_probability_without_sampling(self):
        args = parse_args(["4", "0", "--probability", "1/10000000000000000000000"])
        assert args.p == Fraction(1, 10 ** 22)

    @pytest.mark.parametrize("argv", [
        ["0", "0"],
        ["12", "13"],
        ["12", "-1"],
        ["12", "1", "--mc-samples", "0"],
        ["12", "1", "--probability", "1.5"],
        ["12", "1", "--probability", "abc"],
        ["12", "1", "--probability", "1/0"],
        ["12", "1", "--model", "poisson"],
        ["4", "0", "--probability", "1/10000000000000000000000", "--mc-samples", "5"],
    ])
    def test_invalid_arguments_exit(self, argv):
        with pytest.raises(SystemExit) as excinfo:
            parse_args(argv)
        assert excinfo.value.code == 2


class TestMain:

    def test_report(self, capsys):
        main(["12", "1"])
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 7
        assert lines[0] == "   1 chunks (  12 items/chunk) -> 8.8 ops"
        assert lines[2] == "   3 chunks (   4 items/chunk) -> 6.5 ops"
        assert lines[5] == "  12 chunks (   1 items/chunk) -> 13.0 ops"
        assert lines[-1] == "best: 3 chunks (4 items/chunk) -> 6.5 ops"

    def test_report_with_monte_carlo(self, capsys):
        main(["4", "4", "--mc-samples", "20", "--seed", "1", "--exact"])
        lines = capsys.readouterr().out.splitlines()
        assert lines[:2] == [
            "   1 chunks (   4 items/chunk) -> 5.0 ops [5]",
            "   1 chunks (   4 items/chunk) -> 5.0 ops [5] by monte carlo",
        ]
        assert len(lines) == 7

    def test_no_defects(self, capsys):
        main(["6", "0"])
        lines = capsys.readouterr().out.splitlines()
        assert lines[-1] == "best: 1 chunks (6 items/chunk) -> 1.0 ops"
