import io

import numpy as np
import pandas as pd
import pytest

from prodline_core import (
    GAParams, InvalidInputError, OptimizerConfig, generate_synthetic_utility_data, solve_exact
)
from prodline_main import (
    PipelineConfig, build_arg_parser, build_choice_table, config_from_args,
    export_choice_table_csv, export_optimization_results_csv,
    export_target_size_comparison_csv, main, run_all_target_sizes,
    run_prodline_pipeline, write_exports
)


def test_choice_table(week8):
    table = build_choice_table(week8, [True, True, False, False, True, False])
    assert len(table) == 10
    assert list(table.columns) == ['customer', 'choice_index', 'choice', 'utility', 'margin']
    assert table['choice'].tolist()[:4] == ['product_2', 'product_2', 'product_1', 'product_5']
    assert table['margin'].sum() == pytest.approx(77.0)


def test_choice_table_status_quo_rows(week8):
    table = build_choice_table(week8, np.zeros(6, dtype=bool))
    assert (table['choice'] == 'status_quo').all()
    assert table['margin'].sum() == 0.0
    csv = export_choice_table_csv(week8, np.zeros(6, dtype=bool))
    assert csv.splitlines()[0] == "customer,choice_index,choice,utility,margin"


def test_results_csv(week8):
    result = solve_exact(week8, OptimizerConfig(target_size=3))
    df = pd.read_csv(io.StringIO(export_optimization_results_csv(result, week8)))
    assert len(df) == 8
    assert df['product_id'].tolist()[-2:] == ['TOTAL', 'METRICS']
    offered = df.iloc[:6]
    assert offered.loc[offered['offered'].astype(str) == 'True', 'product'].tolist() == [
        'product_1', 'product_2', 'product_5'
    ]
    assert 'Profit: 77.00' in df.iloc[-1]['margin']


def test_pipeline_on_week8_case():
    result = run_prodline_pipeline(PipelineConfig(seed=42))
    assert result.optimization_result.best_products == [1, 2, 5]
    assert result.optimization_result.profit == pytest.approx(77.0)
    assert result.matches_exact is True
    assert result.warnings == []
    assert len(result.choice_table) == 10
    assert result.size_comparison is None
    assert result.comparison_csv is None


def test_pipeline_without_verification():
    messages = []
    result = run_prodline_pipeline(
        PipelineConfig(verify_exact=False, max_generations=20, seed=1),
        progress_callback=messages.append
    )
    assert result.exact_result is None
    assert result.matches_exact is None
    assert messages[0] == "Loading data..."
    assert messages[-1] == "Generating export files..."


def test_pipeline_margin_override():
    result = run_prodline_pipeline(PipelineConfig(margin_values=[1, 1, 1, 1, 1, 1], seed=3))
    assert result.metadata['margin_source'] == 'list'
    assert result.data.margins.tolist() == [1.0] * 6


def test_pipeline_utility_file_needs_margins(tmp_path):
    path = tmp_path / "u.csv"
    path.write_text("1,2,3\n4,5,6\n")
    with pytest.raises(InvalidInputError):
        run_prodline_pipeline(PipelineConfig(utility_path=path))


def test_pipeline_with_files(tmp_path):
    u = tmp_path / "u.csv"
    m = tmp_path / "m.csv"
    u.write_text("0,2,1\n0,-1,3\n0,1,-1\n")
    m.write_text("5,4\n")
    result = run_prodline_pipeline(
        PipelineConfig(utility_path=u, margin_path=m, target_size=1, seed=0)
    )
    assert result.metadata['source'] == str(u)
    # {1} earns 5 + 5, {2} earns 4 + 4
    assert result.exact_result.best_products == [1]
    assert result.matches_exact is True


def test_all_target_sizes(week8):
    comparisons = run_all_target_sizes(week8, GAParams(population_size=60, seed=42))
    assert [c.target_size for c in comparisons] == list(range(7))
    assert all(c.matches_exact for c in comparisons)
    assert comparisons[0].products == []
    assert comparisons[3].products == [1, 2, 5]

    df = pd.read_csv(io.StringIO(export_target_size_comparison_csv(comparisons)))
    assert df['target_size'].tolist() == list(range(7))


def test_selected_target_sizes_without_exact(week8):
    comparisons = run_all_target_sizes(week8, GAParams(max_generations=10, seed=1),
                                       sizes=[2], verify_exact=False)
    assert len(comparisons) == 1
    assert comparisons[0].exact_profit is None
    assert comparisons[0].matches_exact is None


def test_arg_parser_defaults():
    config = config_from_args(build_arg_parser().parse_args([]))
    assert config.utility_path is None
    assert config.target_size == 3
    assert config.max_generations == 200
    assert config.verify_exact is True


def test_arg_parser_margin_values():
    config = config_from_args(build_arg_parser().parse_args(
        ["--margin-values", "1,2,3,4,5,6", "--no-verify", "--compare-sizes"]
    ))
    assert config.margin_values == [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    assert config.verify_exact is False
    assert config.compare_sizes is True


def test_margin_sources_are_exclusive():
    with pytest.raises(SystemExit):
        build_arg_parser().parse_args(["--margins", "m.csv", "--margin-values", "1"])


def test_main_writes_exports(tmp_path, capsys):
    code = main(["--generations", "30", "--compare-sizes", "--output-dir", str(tmp_path)])
    assert code == 0
    for name in ("customer_choices.csv", "optimization_results.csv", "target_size_comparison.csv"):
        assert (tmp_path / name).exists()
    out = capsys.readouterr().out
    assert "[Optimization Results]" in out


@pytest.mark.parametrize("argv", [
    ["--target-size", "9"],
    ["--margin-values", "1,2"],
    ["--margin-values", "a,b"],
    ["--generations", "-1"],
])
def test_main_invalid_input_exit_code(argv):
    assert main(argv) == 2


def test_write_exports_skips_missing(tmp_path):
    result = run_prodline_pipeline(PipelineConfig(max_generations=10, verify_exact=False, seed=2))
    written = write_exports(result, tmp_path / "out")
    assert sorted(p.name for p in written) == ["customer_choices.csv", "optimization_results.csv"]


@pytest.fixture
def large_market(tmp_path):
    data = generate_synthetic_utility_data(30, 22, seed=5)
    path = tmp_path / "large.csv"
    pd.DataFrame(data.utilities).to_csv(path, index=False, header=False)
    return data, path


def test_main_skips_exact_check_above_enumeration_limit(large_market):
    data, path = large_market
    margin_values = ",".join(str(m) for m in data.margins)
    code = main(["--utilities", str(path), "--margin-values", margin_values,
                 "--generations", "20"])
    assert code == 0


def test_pipeline_skips_exact_check_above_enumeration_limit(large_market):
    data, path = large_market
    result = run_prodline_pipeline(PipelineConfig(
        utility_path=path, margin_values=data.margins.tolist(), max_generations=20, seed=1
    ))
    assert result.data.num_products == 22
    assert result.exact_result is None
    assert result.matches_exact is None


def test_target_sizes_skip_exact_check_above_enumeration_limit(large_market):
    data, _ = large_market
    comparisons = run_all_target_sizes(data, GAParams(max_generations=5, seed=1), sizes=[3])
    assert comparisons[0].exact_profit is None
    assert comparisons[0].matches_exact is None
