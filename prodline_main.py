"""
PRODLINE Main Orchestrator
Runs the complete product line pipeline from files to exported results

Version: 1.2
Date: October 2026

This module provides a clean entry point for running the complete pipeline:
1. Load utilities and margins (built-in Week 8 case or user files)
2. Check the data for modelling issues
3. Run the penalised GA for the requested assortment size
4. Verify the GA against exhaustive enumeration (small problems)
5. Export choice table and results as CSV

Features:
- Per-customer choice table for the best assortment
- Batch comparison of every target size 0..M
- Command line interface (see build_arg_parser)
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np
import pandas as pd

from prodline_core import (
    EXACT_THRESHOLD, GAParams, InvalidInputError, OptimizationResult, OptimizerConfig,
    UtilityData, products_in, run_prodline_ga, simulate_choices, solve_exact
)
from prodline_data_loader import (
    describe_loaded_data, load_prodline_data, load_week8_case,
    parse_margin_values, validate_data_consistency
)

logger = logging.getLogger(__name__)


# =============================================================================
# DATA EXPORT FUNCTIONS
# =============================================================================

def build_choice_table(data: UtilityData, assortment) -> pd.DataFrame:
    """One row per customer with the alternative chosen under `assortment`."""
    choices = simulate_choices(data.utilities, assortment)
    rows = []
    for i, choice in enumerate(choices):
        rows.append({
            'customer': data.customer_ids[i],
            'choice_index': int(choice),
            'choice': data.alternative_name(int(choice)),
            'utility': float(data.utilities[i, choice]),
            'margin': float(data.margins[choice - 1]) if choice > 0 else 0.0,
        })
    return pd.DataFrame(rows)


def export_choice_table_csv(data: UtilityData, assortment) -> str:
    """Export the per-customer choice table as a CSV string."""
    return build_choice_table(data, assortment).to_csv(index=False)


def export_optimization_results_csv(result: OptimizationResult, data: UtilityData) -> str:
    """
    Export optimization results to CSV format.

    Format: One row per candidate, then TOTAL and METRICS rows.
    """
    rows = []
    shares = result.share_per_product or [0.0] * data.num_products

    for j, name in enumerate(data.product_names):
        rows.append({
            'product_id': j + 1,
            'product': name,
            'offered': bool(result.best_assortment[j]),
            'margin': float(data.margins[j]),
            'market_share_pct': round(shares[j], 2),
        })

    rows.append({
        'product_id': 'TOTAL',
        'product': '',
        'offered': result.best_line.size,
        'margin': '',
        'market_share_pct': round(sum(shares), 2),
    })

    rows.append({
        'product_id': 'METRICS',
        'product': f'Solver: {result.solver_type}',
        'offered': f'Target size: {result.target_size}',
        'margin': f'Profit: {result.profit:.2f}',
        'market_share_pct': f'Objective: {result.objective_value:.2f}',
    })

    return pd.DataFrame(rows).to_csv(index=False)


# =============================================================================
# BATCH COMPARISON OF TARGET SIZES
# =============================================================================

def use_exact(data: UtilityData, verify_exact: bool) -> bool:
    """Exact enumeration only runs when requested and the problem is small enough."""
    if verify_exact and data.num_products > EXACT_THRESHOLD:
        logger.info(
            "Skipping exact check: %d products exceeds the enumeration limit of %d",
            data.num_products, EXACT_THRESHOLD
        )
        return False
    return verify_exact


@dataclass
class TargetSizeComparison:
    """Best assortment found for one target size."""
    target_size: int
    products: List[int]
    profit: float
    objective_value: float
    exact_profit: Optional[float]
    generations: int
    elapsed_seconds: float

    @property
    def matches_exact(self) -> Optional[bool]:
        if self.exact_profit is None:
            return None
        return bool(np.isclose(self.profit, self.exact_profit))


def run_all_target_sizes(data: UtilityData,
                         ga_params: GAParams,
                         sizes: Optional[Sequence[int]] = None,
                         verify_exact: bool = True,
                         progress_callback=None) -> List[TargetSizeComparison]:
    """Run the GA for every target size (default 0..M)."""
    if sizes is None:
        sizes = range(data.num_products + 1)

    verify_exact = use_exact(data, verify_exact)

    results = []
    for size in sizes:
        if progress_callback:
            progress_callback(f"Optimizing target size {size}...")

        config = OptimizerConfig(target_size=size)
        opt_result = run_prodline_ga(data, config, ga_params)
        exact_profit = solve_exact(data, config).profit if verify_exact else None

        results.append(TargetSizeComparison(
            target_size=size,
            products=opt_result.best_products,
            profit=opt_result.profit,
            objective_value=opt_result.objective_value,
            exact_profit=exact_profit,
            generations=opt_result.generations,
            elapsed_seconds=opt_result.elapsed_seconds
        ))

    return results


def export_target_size_comparison_csv(comparisons: List[TargetSizeComparison]) -> str:
    """Export target size comparison results to CSV."""
    rows = []
    for comp in comparisons:
        rows.append({
            'target_size': comp.target_size,
            'products': ' '.join(str(p) for p in comp.products),
            'profit': round(comp.profit, 2),
            'objective': round(comp.objective_value, 2),
            'exact_profit': round(comp.exact_profit, 2) if comp.exact_profit is not None else None,
            'matches_exact': comp.matches_exact,
            'generations': comp.generations,
            'time_seconds': round(comp.elapsed_seconds, 3),
        })
    return pd.DataFrame(rows).to_csv(index=False)


# =============================================================================
# MAIN PIPELINE ORCHESTRATOR
# =============================================================================

@dataclass
class PipelineConfig:
    """Configuration for the full pipeline."""
    # Data (None = built-in Week 8 case)
    utility_path: Optional[Path] = None
    margin_path: Optional[Path] = None
    margin_values: Optional[List[float]] = None

    # Optimization settings
    target_size: int = 3

    # GA settings
    population_size: int = 50
    max_generations: int = 200
    mutation_rate: float = 0.1

    # Random seed
    seed: int = 42

    verify_exact: bool = True
    compare_sizes: bool = False


@dataclass
class PipelineResult:
    """Complete results from the pipeline."""
    data: UtilityData
    metadata: dict
    optimization_result: OptimizationResult
    choice_table: pd.DataFrame
    choices_csv: str
    results_csv: str
    warnings: List[str] = field(default_factory=list)
    exact_result: Optional[OptimizationResult] = None
    size_comparison: Optional[List[TargetSizeComparison]] = None
    comparison_csv: Optional[str] = None
    total_elapsed_seconds: float = 0.0

    @property
    def matches_exact(self) -> Optional[bool]:
        if self.exact_result is None:
            return None
        return bool(np.isclose(self.optimization_result.objective_value,
                               self.exact_result.objective_value))


def load_pipeline_data(config: PipelineConfig):
    """Load the data a PipelineConfig points at."""
    if config.utility_path is None:
        data, metadata = load_week8_case()
        if config.margin_values is not None:
            data = UtilityData(
                utilities=data.utilities,
                margins=config.margin_values,
                product_names=data.product_names,
                customer_ids=data.customer_ids,
                status_quo_name=data.status_quo_name
            )
            metadata['margins'] = data.margins.tolist()
            metadata['margin_source'] = 'list'
        return data, metadata

    if config.margin_values is not None:
        data, metadata = load_prodline_data(config.utility_path, margins=config.margin_values)
    elif config.margin_path is not None:
        data, metadata = load_prodline_data(config.utility_path,
                                            margin_filepath_or_content=config.margin_path)
    else:
        raise InvalidInputError("A utility file needs margins (--margins or --margin-values)")
    metadata['source'] = str(config.utility_path)
    return data, metadata


def run_prodline_pipeline(config: PipelineConfig,
                          progress_callback: Optional[Callable[[str], None]] = None) -> PipelineResult:
    """
    Run the complete pipeline.

    Steps:
    1. Load data
    2. Check data consistency
    3. Run GA optimization
    4. Optionally verify with exact enumeration
    5. Optionally compare all target sizes
    6. Generate export CSVs
    """
    start_time = time.time()

    if progress_callback:
        progress_callback("Loading data...")
    data, metadata = load_pipeline_data(config)

    warnings = validate_data_consistency(data)
    for w in warnings:
        logger.warning(w)

    ga_params = GAParams(
        population_size=config.population_size,
        max_generations=config.max_generations,
        mutation_rate=config.mutation_rate,
        seed=config.seed
    )
    opt_config = OptimizerConfig(target_size=config.target_size)

    if progress_callback:
        progress_callback("Running GA optimization...")
    optimization_result = run_prodline_ga(
        data, opt_config, ga_params,
        progress_callback=lambda g, f: progress_callback(f"Gen {g}: {f:.2f}") if progress_callback and g % 50 == 0 else None
    )

    exact_result = None
    if use_exact(data, config.verify_exact):
        if progress_callback:
            progress_callback("Verifying with exact enumeration...")
        exact_result = solve_exact(data, opt_config)
        if not np.isclose(exact_result.objective_value, optimization_result.objective_value):
            logger.warning(
                "GA objective %.2f below exact optimum %.2f (products %s)",
                optimization_result.objective_value, exact_result.objective_value,
                exact_result.best_products
            )

    size_comparison = None
    comparison_csv = None
    if config.compare_sizes:
        if progress_callback:
            progress_callback("Comparing all target sizes...")
        size_comparison = run_all_target_sizes(
            data, ga_params, verify_exact=config.verify_exact,
            progress_callback=progress_callback
        )
        comparison_csv = export_target_size_comparison_csv(size_comparison)

    if progress_callback:
        progress_callback("Generating export files...")
    choice_table = build_choice_table(data, optimization_result.best_assortment)

    return PipelineResult(
        data=data,
        metadata=metadata,
        optimization_result=optimization_result,
        choice_table=choice_table,
        choices_csv=choice_table.to_csv(index=False),
        results_csv=export_optimization_results_csv(optimization_result, data),
        warnings=warnings,
        exact_result=exact_result,
        size_comparison=size_comparison,
        comparison_csv=comparison_csv,
        total_elapsed_seconds=time.time() - start_time
    )


# =============================================================================
# COMMAND LINE INTERFACE
# =============================================================================

def print_results(result: PipelineResult):
    """Print summary of pipeline results."""
    opt = result.optimization_result
    data = result.data

    print(describe_loaded_data(data, result.metadata))

    print(f"\n[Optimization Results]")
    print(f"  Target size: {opt.target_size}")
    print(f"  Best assortment: {', '.join(data.product_names[p - 1] for p in opt.best_products) or '(none)'}")
    print(f"  Profit: {opt.profit:,.2f}")
    print(f"  Objective: {opt.objective_value:,.2f}")
    print(f"  Generations: {opt.generations}")
    print(f"  Time: {opt.elapsed_seconds:.2f}s")

    if result.exact_result is not None:
        status = "matches" if result.matches_exact else "DOES NOT match"
        print(f"  Exact optimum: {result.exact_result.best_products} "
              f"(profit {result.exact_result.profit:,.2f}) - GA {status}")

    print(f"\n[Customer Choices]")
    print(result.choice_table.to_string(index=False))

    if result.size_comparison:
        print(f"\n[Target Size Comparison]")
        print("-" * 60)
        for comp in result.size_comparison:
            print(f"  Size {comp.target_size}: products {comp.products}, profit {comp.profit:,.2f}")

    print(f"\n[Total Pipeline Time: {result.total_elapsed_seconds:.2f}s]")
    print("=" * 60)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def build_arg_parser() -> argparse.ArgumentParser:
    """CLI parser mapping onto PipelineConfig."""
    parser = argparse.ArgumentParser(
        description="Find the most profitable product line of a given size."
    )
    parser.add_argument("--utilities", type=Path, default=None,
                        help="Utility CSV (default: built-in Week 8 case)")
    margins = parser.add_mutually_exclusive_group()
    margins.add_argument("--margins", type=Path, default=None, help="Margin CSV")
    margins.add_argument("--margin-values", type=str, default=None,
                         help="Comma-separated margins, e.g. 8,7,8,6,9,7")
    parser.add_argument("--target-size", type=int, default=3, help="Number of products to offer")
    parser.add_argument("--population-size", type=int, default=50)
    parser.add_argument("--generations", type=int, default=200, help="Search budget (max GA generations)")
    parser.add_argument("--mutation-rate", type=float, default=0.1)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--compare-sizes", action="store_true", help="Also optimize every target size")
    parser.add_argument("--no-verify", action="store_true", help="Skip the exact enumeration check")
    parser.add_argument("--output-dir", type=Path, default=None, help="Write CSV exports here")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", default=None)
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        utility_path=args.utilities,
        margin_path=args.margins,
        margin_values=parse_margin_values(args.margin_values) if args.margin_values else None,
        target_size=args.target_size,
        population_size=args.population_size,
        max_generations=args.generations,
        mutation_rate=args.mutation_rate,
        seed=args.seed,
        verify_exact=not args.no_verify,
        compare_sizes=args.compare_sizes
    )


def write_exports(result: PipelineResult, output_dir: Path) -> List[Path]:
    """Save CSV exports; returns the written paths."""
    output_dir.mkdir(parents=True, exist_ok=True)
    exports = {
        "customer_choices.csv": result.choices_csv,
        "optimization_results.csv": result.results_csv,
        "target_size_comparison.csv": result.comparison_csv,
    }
    written = []
    for filename, content in exports.items():
        if content is None:
            continue
        path = output_dir / filename
        path.write_text(content)
        written.append(path)
    return written


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    args = build_arg_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = config_from_args(args)
        result = run_prodline_pipeline(config)
    except InvalidInputError as e:
        logger.error("Invalid input: %s", e)
        return 2

    print_results(result)

    if args.output_dir:
        for path in write_exports(result, args.output_dir):
            print(f"Saved: {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
