"""
PRODLINE: Product Line Assortment Optimizer
Core Module - Version 1.2

Version: 1.2
Date: October 2026

Simulates first-choice purchases from individual customer utilities,
evaluates firm profit for an assortment of candidate products and searches
for the most profitable assortment of a given size.

Choice Rule:
- Every customer buys exactly one alternative: the status quo or one of the
  offered candidates, whichever has the highest utility
- Candidates that are not offered are excluded, never zeroed
- Exact ties go to the lowest index (the status quo is index 0)
- The status quo earns no margin

Cardinality Constraint:
- The GA searches unconstrained bit vectors of length M
- objective = profit - 10 * max(margins) * |size - target_size|
- An exact enumeration solver checks the GA on small problems (M <= 20)

References:
- Green, P.E. & Krieger, A.M. (1985). Models and Heuristics for Product Line
  Selection. Marketing Science, 4(1), 1-19.
- Balakrishnan & Jacob (1996). Management Science, 42(8), 1105-1117.
"""

import itertools
import logging
import random
import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS & ERRORS
# =============================================================================

PENALTY_MULTIPLIER = 10.0
STATUS_QUO_INDEX = 0
EXACT_THRESHOLD = 20             # Max products for exact enumeration


class InvalidInputError(ValueError):
    """Raised when utilities, margins, assortments or sizes are malformed."""


class SelectionType(IntEnum):
    """GA selection methods."""
    TOURNAMENT = 1
    ROULETTE = 2


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _as_utility_matrix(utilities) -> np.ndarray:
    try:
        arr = np.array(utilities, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Utility matrix must be a rectangular numeric table: {e}") from e

    if arr.ndim != 2:
        raise InvalidInputError(f"Utility matrix must be 2-D, got {arr.ndim} dimension(s)")
    if arr.shape[0] == 0:
        raise InvalidInputError("Utility matrix has no customers")
    if arr.shape[1] < 2:
        raise InvalidInputError(
            "Utility matrix needs a status quo column and at least one candidate column"
        )
    if not np.isfinite(arr).all():
        row, col = np.argwhere(~np.isfinite(arr))[0]
        raise InvalidInputError(f"Non-finite utility for customer {row}, column {col}")
    return arr


def _as_margins(margins, num_products: int) -> np.ndarray:
    try:
        arr = np.array(margins, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Margins must be numeric: {e}") from e

    if arr.ndim != 1 or len(arr) != num_products:
        raise InvalidInputError(
            f"Expected {num_products} margins (one per candidate), got shape {arr.shape}"
        )
    if not np.isfinite(arr).all():
        raise InvalidInputError(f"Non-finite margin at product {int(np.argmin(np.isfinite(arr))) + 1}")
    return arr


def _as_assortment(assortment, num_products: int) -> np.ndarray:
    arr = np.asarray(assortment)
    if arr.ndim != 1 or len(arr) != num_products:
        raise InvalidInputError(
            f"Assortment must be a vector of length {num_products}, got shape {arr.shape}"
        )
    if arr.dtype != np.bool_:
        if not np.isin(arr, (0, 1)).all():
            raise InvalidInputError(f"Assortment entries must be boolean, got {arr.tolist()}")
        arr = arr.astype(bool)
    return arr


def _check_target_size(target_size, num_products: int) -> int:
    if isinstance(target_size, bool) or not isinstance(target_size, (int, np.integer)):
        raise InvalidInputError(f"Target size must be an integer, got {target_size!r}")
    if not 0 <= target_size <= num_products:
        raise InvalidInputError(
            f"Target size {target_size} outside feasible range [0, {num_products}]"
        )
    return int(target_size)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class UtilityData:
    """Customer utilities (status quo + candidates) and candidate margins."""
    utilities: np.ndarray            # Shape: (num_customers, num_products + 1), column 0 = status quo
    margins: np.ndarray              # Shape: (num_products,)
    product_names: Optional[List[str]] = None
    customer_ids: Optional[List[str]] = None
    status_quo_name: str = "Status Quo"

    def __post_init__(self):
        self.utilities = _as_utility_matrix(self.utilities)
        self.margins = _as_margins(self.margins, self.utilities.shape[1] - 1)
        self.utilities.setflags(write=False)
        self.margins.setflags(write=False)

        if self.product_names is None:
            self.product_names = [f"Product {j}" for j in range(1, self.num_products + 1)]
        elif len(self.product_names) != self.num_products:
            raise InvalidInputError(
                f"Expected {self.num_products} product names, got {len(self.product_names)}"
            )
        if self.customer_ids is None:
            self.customer_ids = [str(i + 1) for i in range(self.num_customers)]
        elif len(self.customer_ids) != self.num_customers:
            raise InvalidInputError(
                f"Expected {self.num_customers} customer ids, got {len(self.customer_ids)}"
            )

    @property
    def num_customers(self) -> int:
        return self.utilities.shape[0]

    @property
    def num_products(self) -> int:
        return self.utilities.shape[1] - 1

    def alternative_name(self, index: int) -> str:
        """Name for a choice index (0 = status quo, 1..M = candidate)."""
        if index == STATUS_QUO_INDEX:
            return self.status_quo_name
        return self.product_names[index - 1]


@dataclass
class ProductLine:
    """An assortment (bit vector over candidates) being evaluated."""
    genes: np.ndarray                # Shape: (num_products,), dtype bool
    fitness: float = 0.0
    profit: float = 0.0
    share_per_product: Optional[List[float]] = None

    def copy(self) -> 'ProductLine':
        return ProductLine(
            genes=self.genes.copy(),
            fitness=self.fitness,
            profit=self.profit,
            share_per_product=self.share_per_product.copy() if self.share_per_product else None
        )

    @property
    def size(self) -> int:
        return int(self.genes.sum())

    @property
    def products(self) -> List[int]:
        return products_in(self.genes)

    def key(self) -> Tuple[bool, ...]:
        return tuple(bool(g) for g in self.genes)


@dataclass
class OptimizerConfig:
    """Configuration for the constrained assortment objective."""
    target_size: int = 3
    penalty_multiplier: float = PENALTY_MULTIPLIER


@dataclass
class GAParams:
    """Genetic Algorithm parameters."""
    population_size: int = 50
    max_generations: int = 200       # Search budget

    # Selection
    selection_type: SelectionType = SelectionType.TOURNAMENT
    tournament_size: int = 3
    random_selection_rate: float = 0.1

    # Crossover
    crossover_rate: float = 0.8

    # Mutation (per bit)
    mutation_rate: float = 0.1

    # Population maintenance
    elitism_count: int = 2

    # Convergence
    convergence_window: int = 30
    convergence_threshold: float = 0.0001
    stall_generations: int = 100

    # Random seed
    seed: Optional[int] = None


@dataclass
class OptimizationResult:
    """Results from an assortment optimization run."""
    best_line: ProductLine
    solver_type: str
    generations: int
    objective_value: float
    profit: float
    target_size: int
    convergence_history: Optional[List[float]] = None

    # Customer-level results
    choices: Optional[np.ndarray] = None    # Chosen alternative per customer

    evaluations: int = 0
    elapsed_seconds: float = 0.0

    @property
    def best_assortment(self) -> np.ndarray:
        return self.best_line.genes

    @property
    def best_products(self) -> List[int]:
        return self.best_line.products

    @property
    def share_per_product(self) -> Optional[List[float]]:
        return self.best_line.share_per_product


# =============================================================================
# ASSORTMENT HELPERS
# =============================================================================

def products_in(assortment) -> List[int]:
    """1-indexed candidate products offered by a bit vector."""
    return [int(j) + 1 for j in np.flatnonzero(np.asarray(assortment, dtype=bool))]


def assortment_from_products(products: Sequence[int], num_products: int) -> np.ndarray:
    """Bit vector from a collection of 1-indexed product numbers."""
    genes = np.zeros(num_products, dtype=bool)
    for p in products:
        if not 1 <= p <= num_products:
            raise InvalidInputError(f"Product {p} outside range 1..{num_products}")
        genes[p - 1] = True
    return genes


# =============================================================================
# CHOICE SIMULATION, PROFIT & OBJECTIVE
# =============================================================================

def _choices(utilities: np.ndarray, genes: np.ndarray) -> np.ndarray:
    available = np.concatenate(([True], genes))
    effective = np.where(available, utilities, -np.inf)
    # argmax returns the first maximum, i.e. the lowest index on ties
    return np.argmax(effective, axis=1)


def _profit_from_choices(choices: np.ndarray, margins: np.ndarray) -> float:
    bought = choices[choices != STATUS_QUO_INDEX]
    return float(margins[bought - 1].sum())


def _penalty_scale(margins: np.ndarray) -> float:
    scale = float(np.max(np.abs(margins)))
    return scale if scale > 0 else 1.0


def size_penalty(
    size: int,
    target_size: int,
    margins,
    multiplier: float = PENALTY_MULTIPLIER
) -> float:
    """Penalty for offering `size` products when `target_size` are wanted."""
    return multiplier * _penalty_scale(np.asarray(margins, dtype=float)) * abs(size - target_size)


def simulate_choices(utilities, assortment) -> np.ndarray:
    """
    Simulate each customer's first choice under an assortment.

    Args:
        utilities: (N, M + 1) table, column 0 = status quo
        assortment: length-M boolean vector of offered candidates

    Returns:
        Int array of length N with 0 = status quo, j = candidate j
    """
    U = _as_utility_matrix(utilities)
    genes = _as_assortment(assortment, U.shape[1] - 1)
    return _choices(U, genes)


def profit(utilities, assortment, margins) -> float:
    """Total margin earned from customers who buy an offered candidate."""
    U = _as_utility_matrix(utilities)
    m = _as_margins(margins, U.shape[1] - 1)
    genes = _as_assortment(assortment, U.shape[1] - 1)
    return _profit_from_choices(_choices(U, genes), m)


def objective(
    utilities,
    assortment,
    margins,
    target_size: int,
    penalty_multiplier: float = PENALTY_MULTIPLIER
) -> float:
    """Profit minus the size-violation penalty."""
    U = _as_utility_matrix(utilities)
    M = U.shape[1] - 1
    m = _as_margins(margins, M)
    genes = _as_assortment(assortment, M)
    target = _check_target_size(target_size, M)
    return _profit_from_choices(_choices(U, genes), m) - size_penalty(
        int(genes.sum()), target, m, penalty_multiplier
    )


# =============================================================================
# ASSORTMENT EVALUATION
# =============================================================================

class AssortmentEvaluator:
    """Evaluates product lines for profit, share and penalised fitness."""

    def __init__(self, data: UtilityData, config: OptimizerConfig):
        self.data = data
        self.config = config
        self.target_size = _check_target_size(config.target_size, data.num_products)
        self.num_evaluations = 0

    def evaluate_product_line(self, line: ProductLine, compute_details: bool = False) -> ProductLine:
        """
        Evaluate a product line.

        Args:
            line: ProductLine to evaluate
            compute_details: If True, also fill per-product shares

        Returns:
            The same ProductLine with fitness and profit populated
        """
        choices = _choices(self.data.utilities, line.genes)
        line.profit = _profit_from_choices(choices, self.data.margins)
        line.fitness = line.profit - size_penalty(
            line.size, self.target_size, self.data.margins, self.config.penalty_multiplier
        )
        self.num_evaluations += 1

        if compute_details:
            counts = np.bincount(choices, minlength=self.data.num_products + 1)
            line.share_per_product = (counts[1:] / self.data.num_customers * 100).tolist()

        return line

    def choices_for(self, line: ProductLine) -> np.ndarray:
        return _choices(self.data.utilities, line.genes)


# =============================================================================
# GENETIC ALGORITHM OPTIMIZER
# =============================================================================

class ProductLineGA:
    """Genetic Algorithm over assortment bit vectors."""

    def __init__(
        self,
        data: UtilityData,
        config: OptimizerConfig,
        ga_params: GAParams
    ):
        if ga_params.max_generations < 0:
            raise InvalidInputError(f"Search budget must be >= 0, got {ga_params.max_generations}")
        if ga_params.population_size < 2:
            raise InvalidInputError(f"Population size must be >= 2, got {ga_params.population_size}")

        self.data = data
        self.config = config
        self.params = ga_params
        self.evaluator = AssortmentEvaluator(data, config)
        self.num_products = data.num_products

        # Local RNG so runs are reproducible and independent
        self.rng = random.Random(ga_params.seed)

    def run(
        self,
        progress_callback: Optional[Callable[[int, float], None]] = None
    ) -> OptimizationResult:
        """Run the genetic algorithm optimization."""
        start_time = time.time()
        logger.info(
            "GA start: %d customers, %d candidates, target size %d, budget %d generations",
            self.data.num_customers, self.num_products,
            self.evaluator.target_size, self.params.max_generations
        )

        population = self._initialize_population()
        for individual in population:
            self.evaluator.evaluate_product_line(individual)
        population.sort(key=lambda x: x.fitness, reverse=True)

        best_line = population[0].copy()
        convergence_history = [best_line.fitness]
        last_improvement_gen = 0

        for gen in range(1, self.params.max_generations + 1):
            new_population = []

            # Elitism
            elite_count = min(self.params.elitism_count, len(population))
            for i in range(elite_count):
                new_population.append(population[i].copy())

            while len(new_population) < self.params.population_size:
                parent1 = self._select(population)
                parent2 = self._select(population)

                if self.rng.random() < self.params.crossover_rate:
                    child1, child2 = self._crossover(parent1, parent2)
                else:
                    child1, child2 = parent1.copy(), parent2.copy()

                self._mutate(child1)
                self._mutate(child2)

                self.evaluator.evaluate_product_line(child1)
                new_population.append(child1)

                if len(new_population) < self.params.population_size:
                    self.evaluator.evaluate_product_line(child2)
                    new_population.append(child2)

            population = new_population
            population.sort(key=lambda x: x.fitness, reverse=True)

            if population[0].fitness > best_line.fitness + 1e-8:
                best_line = population[0].copy()
                last_improvement_gen = gen
                logger.debug("Gen %d: new best %s -> %.4f", gen, best_line.products, best_line.fitness)

            convergence_history.append(best_line.fitness)

            if progress_callback:
                progress_callback(gen, best_line.fitness)

            if self._check_convergence(convergence_history) or \
               (gen - last_improvement_gen > self.params.stall_generations):
                break

        elapsed = time.time() - start_time

        self.evaluator.evaluate_product_line(best_line, compute_details=True)
        logger.info(
            "GA done after %d generations: products %s, profit %.2f, objective %.2f",
            len(convergence_history) - 1, best_line.products, best_line.profit, best_line.fitness
        )

        return OptimizationResult(
            best_line=best_line,
            solver_type="GA",
            generations=len(convergence_history) - 1,
            objective_value=best_line.fitness,
            profit=best_line.profit,
            target_size=self.evaluator.target_size,
            convergence_history=convergence_history,
            choices=self.evaluator.choices_for(best_line),
            evaluations=self.evaluator.num_evaluations,
            elapsed_seconds=elapsed
        )

    def _random_line(self) -> ProductLine:
        """Random assortment whose size is drawn uniformly from 0..M."""
        size = self.rng.randint(0, self.num_products)
        genes = np.zeros(self.num_products, dtype=bool)
        genes[self.rng.sample(range(self.num_products), size)] = True
        return ProductLine(genes=genes)

    def _initialize_population(self) -> List[ProductLine]:
        """Initialize a population of distinct assortments of mixed sizes."""
        population = []
        used_combinations = set()

        max_attempts = self.params.population_size * 10
        attempts = 0

        while len(population) < self.params.population_size and attempts < max_attempts:
            line = self._random_line()
            if line.key() not in used_combinations:
                used_combinations.add(line.key())
                population.append(line)
            attempts += 1

        # Small search spaces run out of distinct assortments
        while len(population) < self.params.population_size:
            population.append(self._random_line())

        return population

    def _select(self, population: List[ProductLine]) -> ProductLine:
        """Select a parent."""
        if self.params.selection_type == SelectionType.TOURNAMENT:
            tournament_size = min(self.params.tournament_size, len(population))
            candidates = self.rng.sample(population, tournament_size)

            if self.rng.random() < self.params.random_selection_rate:
                return self.rng.choice(candidates).copy()
            return max(candidates, key=lambda x: x.fitness).copy()

        # Roulette on fitness shifted to be positive (penalised fitness can be negative)
        floor = min(ind.fitness for ind in population)
        weights = [ind.fitness - floor + 1e-6 for ind in population]
        return self.rng.choices(population, weights=weights, k=1)[0].copy()

    def _crossover(
        self,
        parent1: ProductLine,
        parent2: ProductLine
    ) -> Tuple[ProductLine, ProductLine]:
        """Uniform crossover: each bit comes from either parent with equal odds."""
        swap = np.array([self.rng.random() < 0.5 for _ in range(self.num_products)], dtype=bool)
        genes1 = np.where(swap, parent2.genes, parent1.genes)
        genes2 = np.where(swap, parent1.genes, parent2.genes)
        return ProductLine(genes=genes1), ProductLine(genes=genes2)

    def _mutate(self, line: ProductLine) -> None:
        """
        Bit-flip mutation with guaranteed change.

        If no bit flips, one offered product is swapped for one that is not
        offered (size-preserving), or a single bit is flipped when the line
        is empty or full.
        """
        mutation_occurred = False

        for j in range(self.num_products):
            if self.rng.random() < self.params.mutation_rate:
                line.genes[j] = not line.genes[j]
                mutation_occurred = True

        if mutation_occurred or self.params.mutation_rate <= 0:
            return

        offered = np.flatnonzero(line.genes).tolist()
        missing = np.flatnonzero(~line.genes).tolist()
        if offered and missing:
            line.genes[self.rng.choice(offered)] = False
            line.genes[self.rng.choice(missing)] = True
        else:
            j = self.rng.randrange(self.num_products)
            line.genes[j] = not line.genes[j]

    def _check_convergence(self, history: List[float]) -> bool:
        """Check if GA has converged."""
        window = self.params.convergence_window
        if len(history) < window:
            return False

        recent = history[-window:]
        range_val = max(recent) - min(recent)

        if abs(max(recent)) < 1e-10:
            return range_val < 1e-10

        return range_val < self.params.convergence_threshold * abs(max(recent))


# =============================================================================
# EXACT ENUMERATION
# =============================================================================

def solve_exact(
    data: UtilityData,
    config: OptimizerConfig,
    exact_threshold: int = EXACT_THRESHOLD
) -> OptimizationResult:
    """
    Evaluate all 2^M assortments and return the best penalised one.

    Ties keep the first assortment in enumeration order.
    """
    if data.num_products > exact_threshold:
        raise InvalidInputError(
            f"Exact enumeration limited to {exact_threshold} products, got {data.num_products}"
        )

    start_time = time.time()
    evaluator = AssortmentEvaluator(data, config)
    best_line = None

    for bits in itertools.product((False, True), repeat=data.num_products):
        line = evaluator.evaluate_product_line(ProductLine(genes=np.array(bits, dtype=bool)))
        if best_line is None or line.fitness > best_line.fitness:
            best_line = line

    evaluator.evaluate_product_line(best_line, compute_details=True)
    logger.info(
        "Exact search over %d assortments: products %s, profit %.2f",
        evaluator.num_evaluations - 1, best_line.products, best_line.profit
    )

    return OptimizationResult(
        best_line=best_line,
        solver_type="Exact",
        generations=0,
        objective_value=best_line.fitness,
        profit=best_line.profit,
        target_size=evaluator.target_size,
        choices=evaluator.choices_for(best_line),
        evaluations=evaluator.num_evaluations - 1,
        elapsed_seconds=time.time() - start_time
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def run_prodline_ga(
    data: UtilityData,
    config: OptimizerConfig,
    ga_params: GAParams,
    progress_callback: Optional[Callable[[int, float], None]] = None
) -> OptimizationResult:
    """Convenience function to run the GA optimization."""
    optimizer = ProductLineGA(data, config, ga_params)
    return optimizer.run(progress_callback)


def optimize_assortment(
    utilities,
    margins,
    target_size: int,
    search_budget: int = 200,
    seed: Optional[int] = None,
    ga_params: Optional[GAParams] = None,
    progress_callback: Optional[Callable[[int, float], None]] = None
) -> OptimizationResult:
    """
    Search for the most profitable assortment of `target_size` candidates.

    Args:
        utilities: (N, M + 1) utility table, column 0 = status quo
        margins: M candidate margins
        target_size: Number of products to offer
        search_budget: Maximum number of GA generations
        seed: Seed for the run's private random number generator
        ga_params: Other GA settings (budget and seed above take precedence)

    Returns:
        OptimizationResult; `best_assortment` and `profit` are the
        user-facing answer, `objective_value` the penalised fitness
    """
    data = UtilityData(utilities=utilities, margins=margins)
    config = OptimizerConfig(target_size=_check_target_size(target_size, data.num_products))

    params = replace(ga_params or GAParams(), max_generations=search_budget, seed=seed)

    return run_prodline_ga(data, config, params, progress_callback)


# =============================================================================
# SYNTHETIC DATA
# =============================================================================

def generate_synthetic_utility_data(
    num_customers: int,
    num_products: int,
    margin_range: Tuple[float, float] = (5.0, 10.0),
    status_quo_shift: float = 0.5,
    seed: Optional[int] = None
) -> UtilityData:
    """
    Generate synthetic customer utilities for testing.

    Candidate utilities are standard normal; the status quo gets a positive
    shift so that not every candidate beats it.
    """
    rng = np.random.default_rng(seed)
    candidates = rng.normal(size=(num_customers, num_products)) * 2.0
    status_quo = rng.normal(loc=status_quo_shift, size=(num_customers, 1)) * 2.0
    margins = np.round(rng.uniform(margin_range[0], margin_range[1], size=num_products))

    return UtilityData(
        utilities=np.hstack([status_quo, candidates]).round(2),
        margins=margins
    )


# =============================================================================
# MAIN (for testing)
# =============================================================================

if __name__ == "__main__":
    print("PRODLINE Core Module v1.2 - Test Run")
    print("=" * 50)

    data = generate_synthetic_utility_data(num_customers=40, num_products=10, seed=7149)
    config = OptimizerConfig(target_size=4)
    ga_params = GAParams(population_size=40, max_generations=150, seed=7149)

    result = run_prodline_ga(
        data, config, ga_params,
        progress_callback=lambda g, f: print(f"  Gen {g}: {f:.2f}") if g % 25 == 0 else None
    )
    exact = solve_exact(data, config)

    print(f"GA:    products {result.best_products}, profit {result.profit:.2f} "
          f"({result.generations} generations, {result.elapsed_seconds:.2f}s)")
    print(f"Exact: products {exact.best_products}, profit {exact.profit:.2f}")
