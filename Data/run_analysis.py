"""
Run the landmark displacement analysis with the settings in config.json.

Reads the position table named by data_paths.positions_csv and writes into
data_paths.results_dir:

- landmark_distances.csv, distance_summary.csv, distance_statistics.csv
- anova_table.csv, method_contrasts.csv, residual_normality.csv, model_fit.csv
- distance_boxplot.png, residual_diagnostics.png

Usage:
    python Data/run_analysis.py
"""

from moco_config import load_config
from analysis_pipeline import run_pipeline


def main():
    config, data_root, _ = load_config()
    run_pipeline(config, data_root)


if __name__ == "__main__":
    main()
