"""
PRODLINE: Product Line Assortment Optimizer
Streamlit Web Application - Version 1.2

Version: 1.2
Date: October 2026

Features:
- Built-in Week 8 teaching case (10 customers, 6 candidate products)
- Upload your own utility and margin CSV files
- Penalised GA with exact enumeration check
- Per-customer choice table, share and convergence charts
- Comparison of every assortment size
- CSV downloads

Run with:  streamlit run prodline_app.py
"""

import time
from typing import List

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from prodline_core import (
    GAParams, InvalidInputError, OptimizationResult, OptimizerConfig,
    UtilityData, generate_synthetic_utility_data, run_prodline_ga, solve_exact
)
from prodline_data_loader import (
    decode_uploaded_content, load_prodline_data, load_week8_case, parse_margin_values,
    validate_data_consistency
)
from prodline_main import (
    TargetSizeComparison, build_choice_table, export_optimization_results_csv,
    export_target_size_comparison_csv, run_all_target_sizes
)

PRODLINE_VERSION = "1.2"
EXACT_LIMIT = 16


# =============================================================================
# CHART BUILDERS
# =============================================================================

def create_share_chart(result: OptimizationResult, data: UtilityData) -> go.Figure:
    """Pie of customers per offered product plus the status quo."""
    shares = result.share_per_product or [0.0] * data.num_products
    labels = [data.product_names[p - 1] for p in result.best_products]
    values = [shares[p - 1] for p in result.best_products]

    sq_share = 100 - sum(shares)
    if sq_share > 0.1:
        labels.append(data.status_quo_name)
        values.append(sq_share)

    fig = px.pie(values=values, names=labels, title="Customer Choice Distribution")
    fig.update_layout(height=350)
    return fig


def create_convergence_chart(history: List[float], objective_name: str = "Objective") -> go.Figure:
    """Best penalised objective per generation."""
    fig = px.line(
        x=list(range(len(history))),
        y=history,
        labels={'x': 'Generation', 'y': objective_name}
    )
    fig.update_layout(height=350)
    return fig


def create_target_size_chart(comparisons: List[TargetSizeComparison]) -> go.Figure:
    """Best profit found for each assortment size."""
    sizes = [c.target_size for c in comparisons]
    fig = go.Figure()
    fig.add_trace(go.Bar(x=sizes, y=[c.profit for c in comparisons],
                         name='GA profit', marker_color='#667eea'))
    if all(c.exact_profit is not None for c in comparisons):
        fig.add_trace(go.Scatter(x=sizes, y=[c.exact_profit for c in comparisons],
                                 mode='markers', name='Exact optimum',
                                 marker=dict(color='#ff6b6b', size=12, symbol='x')))
    fig.update_layout(height=400, title="Best Profit by Assortment Size")
    fig.update_xaxes(title_text="Products offered", dtick=1)
    fig.update_yaxes(title_text="Profit")
    return fig


# =============================================================================
# MAIN APPLICATION
# =============================================================================

def main():
    st.set_page_config(
        page_title=f"PRODLINE v{PRODLINE_VERSION}: Product Line Optimizer",
        layout="wide",
        initial_sidebar_state="expanded"
    )
    st.title(f"PRODLINE v{PRODLINE_VERSION}")
    st.markdown("**Product Line Assortment Optimizer**")

    for key in ('data', 'metadata', 'result', 'exact_result', 'size_comparison'):
        if key not in st.session_state:
            st.session_state[key] = None

    # ==========================================================================
    # SIDEBAR
    # ==========================================================================
    with st.sidebar:
        st.header("Data Source")
        data_source = st.radio(
            "Select Data Source",
            ["Week 8 Case", "Synthetic Data", "Upload Files"],
            help="Week 8: built-in teaching case. Synthetic: random utilities. Upload: your own CSVs."
        )

        if data_source == "Synthetic Data":
            num_customers = st.slider("Number of Customers", 10, 500, 100, step=10)
            num_candidates = st.slider("Candidate Products", 2, 20, 8)
            data_seed = st.number_input("Data Seed", 0, 9999, 7149)
        elif data_source == "Upload Files":
            utility_file = st.file_uploader("Utility File (.csv)", type=['csv', 'txt'])
            margin_file = st.file_uploader("Margin File (.csv)", type=['csv', 'txt'])
            margin_text = st.text_input("...or margins as a list", "",
                                        help="Comma-separated, one per candidate")

        st.divider()

        st.header("Optimization Settings")
        target_size = st.number_input("Products in Line", 0, 20, 3)

        st.header("GA Settings")
        pop_size = st.slider("Population Size", 10, 300, 50)
        max_gen = st.slider("Search Budget (Generations)", 10, 1000, 200)
        mutation_rate = st.slider("Mutation Rate", 0.01, 0.5, 0.1)
        seed = st.number_input("Random Seed", 0, 9999, 42)

    # ==========================================================================
    # MAIN PANEL - DATA LOADING
    # ==========================================================================
    st.header("Step 1: Load Data")

    if st.button("Load Data", type="primary"):
        try:
            if data_source == "Week 8 Case":
                data, metadata = load_week8_case()
            elif data_source == "Synthetic Data":
                data = generate_synthetic_utility_data(num_customers, num_candidates, seed=data_seed)
                metadata = {'source': 'Synthetic', 'num_customers': data.num_customers,
                            'num_products': data.num_products, 'margin_source': 'generated'}
            else:
                if utility_file is None:
                    st.error("Upload a utility file first.")
                    st.stop()
                if margin_text.strip():
                    data, metadata = load_prodline_data(
                        decode_uploaded_content(utility_file.getvalue(), "Utility file"),
                        margins=parse_margin_values(margin_text),
                        utility_is_content=True
                    )
                elif margin_file is not None:
                    data, metadata = load_prodline_data(
                        decode_uploaded_content(utility_file.getvalue(), "Utility file"),
                        margin_filepath_or_content=decode_uploaded_content(margin_file.getvalue(), "Margin file"),
                        utility_is_content=True,
                        margin_is_content=True
                    )
                else:
                    st.error("Upload a margin file or type the margins.")
                    st.stop()
                metadata['source'] = 'Uploaded'

            st.session_state.data = data
            st.session_state.metadata = metadata
            st.session_state.result = None
            st.session_state.exact_result = None
            st.session_state.size_comparison = None
            st.success(f"Loaded {data.num_customers} customers, {data.num_products} candidates")

        except InvalidInputError as e:
            st.error(f"Invalid data: {e}")

    data = st.session_state.data
    if data is None:
        st.info("Select a data source and load data to begin.")
        return

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Source", st.session_state.metadata.get('source', 'unknown'))
    with col2:
        st.metric("Customers", data.num_customers)
    with col3:
        st.metric("Candidates", data.num_products)

    with st.expander("Utilities and Margins"):
        table = pd.DataFrame(
            data.utilities,
            columns=[data.status_quo_name] + data.product_names,
            index=data.customer_ids
        )
        st.dataframe(table, use_container_width=True)
        st.write("Margins:", dict(zip(data.product_names, data.margins.tolist())))

    for w in validate_data_consistency(data):
        st.warning(w)

    st.divider()

    # ==========================================================================
    # OPTIMIZATION
    # ==========================================================================
    st.header("Step 2: Run Optimization")

    ga_params = GAParams(
        population_size=pop_size,
        max_generations=max_gen,
        mutation_rate=mutation_rate,
        seed=seed
    )

    col1, col2 = st.columns(2)
    with col1:
        run_single = st.button("Run Optimization", type="primary", use_container_width=True)
    with col2:
        run_all = st.button("Compare All Sizes", type="secondary", use_container_width=True)

    if run_single:
        progress_bar = st.progress(0)
        status_text = st.empty()

        def progress_callback(gen, fitness):
            progress_bar.progress(min(gen / max_gen, 1.0))
            status_text.text(f"Generation {gen}/{max_gen}: best objective = {fitness:.2f}")

        try:
            config = OptimizerConfig(target_size=int(target_size))
            result = run_prodline_ga(data, config, ga_params, progress_callback=progress_callback)
            st.session_state.result = result
            st.session_state.exact_result = (
                solve_exact(data, config) if data.num_products <= EXACT_LIMIT else None
            )
            progress_bar.progress(1.0)
            status_text.success(f"Complete in {result.elapsed_seconds:.2f}s")
        except InvalidInputError as e:
            st.error(f"Optimization failed: {e}")

    if run_all:
        status_text = st.empty()

        def progress_callback(msg):
            status_text.text(msg)

        st.session_state.size_comparison = run_all_target_sizes(
            data, ga_params,
            verify_exact=data.num_products <= EXACT_LIMIT,
            progress_callback=progress_callback
        )
        status_text.success("All sizes optimized!")

    st.divider()

    # ==========================================================================
    # RESULTS
    # ==========================================================================
    result = st.session_state.result
    if result:
        st.header("Optimization Results")

        exact = st.session_state.exact_result
        col1, col2, col3, col4 = st.columns(4)
        with col1:
            st.metric("Profit", f"{result.profit:,.2f}")
        with col2:
            st.metric("Objective", f"{result.objective_value:,.2f}")
        with col3:
            st.metric("Generations", result.generations)
        with col4:
            if exact is not None:
                st.metric("Exact Optimum", f"{exact.profit:,.2f}",
                          delta=f"{result.profit - exact.profit:+.2f}")

        st.subheader("Optimal Product Line")
        shares = result.share_per_product or [0.0] * data.num_products
        products_df = pd.DataFrame([
            {
                'Product': data.product_names[j],
                'Offered': bool(result.best_assortment[j]),
                'Margin': data.margins[j],
                'Share %': f"{shares[j]:.1f}%",
            }
            for j in range(data.num_products)
        ])
        st.dataframe(products_df, hide_index=True, use_container_width=True)

        col1, col2 = st.columns(2)
        with col1:
            st.plotly_chart(create_share_chart(result, data), use_container_width=True)
        with col2:
            if result.convergence_history and len(result.convergence_history) > 1:
                st.plotly_chart(create_convergence_chart(result.convergence_history),
                                use_container_width=True)

        st.subheader("Customer Choices")
        choice_table = build_choice_table(data, result.best_assortment)
        st.dataframe(choice_table, hide_index=True, use_container_width=True)

        col1, col2 = st.columns(2)
        with col1:
            st.download_button(
                "Download Results (CSV)",
                data=export_optimization_results_csv(result, data),
                file_name=f"prodline_results_{int(time.time())}.csv",
                mime="text/csv"
            )
        with col2:
            st.download_button(
                "Download Customer Choices (CSV)",
                data=choice_table.to_csv(index=False),
                file_name=f"prodline_choices_{int(time.time())}.csv",
                mime="text/csv"
            )

    comparisons = st.session_state.size_comparison
    if comparisons:
        st.header("Assortment Size Comparison")
        comp_df = pd.DataFrame([
            {
                'Size': c.target_size,
                'Products': ", ".join(data.product_names[p - 1] for p in c.products) or "(none)",
                'Profit': c.profit,
                'Exact': c.exact_profit if c.exact_profit is not None else np.nan,
                'Generations': c.generations,
            }
            for c in comparisons
        ])
        st.dataframe(comp_df, hide_index=True, use_container_width=True)
        st.plotly_chart(create_target_size_chart(comparisons), use_container_width=True)
        st.download_button(
            "Download Size Comparison (CSV)",
            data=export_target_size_comparison_csv(comparisons),
            file_name=f"prodline_sizes_{int(time.time())}.csv",
            mime="text/csv"
        )


def show_footer():
    st.divider()
    st.markdown(f"""
    ---
    **PRODLINE v{PRODLINE_VERSION}** | October 2026

    **References:** Green & Krieger (1985), Balakrishnan & Jacob (1996)
    """)


if __name__ == "__main__":
    main()
    show_footer()
