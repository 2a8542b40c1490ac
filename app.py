"""
MoCo Results Viewer App (Streamlit)
"""

from pathlib import Path
import sys

import plotly.graph_objects as go
import streamlit as st

ROOT_DIR = Path(__file__).resolve().parent
DATA_DIR = ROOT_DIR / "Data"
sys.path.insert(0, str(DATA_DIR))

from app_utils import (  # noqa: E402
    filter_summary,
    load_app_config,
    load_result_tables,
)


st.set_page_config(page_title="MoCo Landmark Analysis", layout="wide")

config, params, paths = load_app_config()
results_dir = paths["results_dir"]
tables = load_result_tables(results_dir)
summary_df = tables["summary"]

st.title("Residual Landmark Motion by Motion-Correction Method")

if summary_df.empty:
    st.error("Results not found. Run the analysis pipeline first (python Data/run_analysis.py).")
    st.stop()

method_order = [m for m in params["method_levels"] if m in set(summary_df["Method"])]

st.sidebar.header("Filters")
marker_options = sorted(summary_df["Marker"].dropna().unique().tolist())
group_options = sorted(summary_df["Group"].dropna().astype(str).unique().tolist())

marker_filter = st.sidebar.multiselect("Markers", marker_options, default=marker_options)
method_filter = st.sidebar.multiselect("Methods", method_order, default=method_order)
group_filter = st.sidebar.multiselect("Groups", group_options, default=group_options)

filtered_df = filter_summary(summary_df, marker_filter, method_filter, group_filter)
st.sidebar.markdown(f"**Rows matched:** {len(filtered_df)}")

st.subheader("Mean distance to reference")
fig = go.Figure()
for method in [m for m in method_order if m in method_filter]:
    sub = filtered_df[filtered_df["Method"] == method]
    fig.add_trace(go.Box(
        x=sub["Marker"],
        y=sub["Distance"],
        name=method,
        boxpoints="all",
        jitter=0.3,
    ))
fig.update_layout(
    boxmode="group",
    xaxis_title="Marker",
    yaxis_title="Distance",
    height=500
)
st.plotly_chart(fig, use_container_width=True)

col_left, col_right = st.columns([1, 1])

with col_left:
    st.subheader("ANOVA (fixed effects)")
    if tables["anova"].empty:
        st.info("No ANOVA table found.")
    else:
        st.dataframe(tables["anova"], use_container_width=True)

    st.subheader("Model fit")
    if not tables["model_fit"].empty:
        st.json(tables["model_fit"].iloc[0].to_dict())
    if not tables["normality"].empty:
        row = tables["normality"].iloc[0]
        st.metric("Shapiro-Wilk p (residuals)", f"{row['p_value']:.4g}")

with col_right:
    st.subheader(f"Method contrasts ({params['contrast_adjustment']})")
    if tables["contrasts"].empty:
        st.info("No contrast table found.")
    else:
        st.dataframe(tables["contrasts"], use_container_width=True)

st.subheader("Descriptive statistics")
st.dataframe(tables["statistics"], use_container_width=True)

st.subheader("Filtered distance summary")
st.dataframe(filtered_df, use_container_width=True)
st.download_button(
    "Download filtered summary (CSV)",
    data=filtered_df.to_csv(index=False).encode("utf-8"),
    file_name="distance_summary_filtered.csv",
    mime="text/csv"
)
