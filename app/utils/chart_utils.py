import plotly.graph_objects as go
import pandas as pd
import numpy as np
from typing import Dict, List
import matplotlib.pyplot as plt
import seaborn as sns

from config import CLASSIFICATION_CONFIG


class ChartVisualizer:
    def __init__(self):
        self.color_scheme = {
            'primary': '#1f77b4',
            'secondary': '#ff7f0e',
            'significant': '#d62728',
            'neutral': '#c7c7c7',
            'breaks': '#2ca02c'
        }

    def create_knox_heatmap(self, knox_result, alpha: float = None) -> go.Figure:
        """Heatmap of Knox p-values, observed pair counts as cell text"""
        if alpha is None:
            alpha = CLASSIFICATION_CONFIG["significance_level"]

        observed = knox_result.observed
        p_values = knox_result.p_values
        significant = knox_result.significant_cells(alpha)

        text = [
            [f"{observed[i, j]}{'*' if significant[i, j] else ''}<br>p={p_values[i, j]:.3f}"
             for j in range(observed.shape[1])]
            for i in range(observed.shape[0])
        ]

        fig = go.Figure(data=go.Heatmap(
            z=p_values,
            x=knox_result.temporal_bands.labels(),
            y=knox_result.spatial_bands.labels(),
            text=text,
            texttemplate="%{text}",
            colorscale='Reds_r',
            zmin=0,
            zmax=1,
            showscale=True,
            colorbar=dict(title="p-value")
        ))

        fig.update_layout(
            title=f'Near-Repeat Knox Test ({knox_result.iterations} iterations, * p < {alpha:g})',
            xaxis_title='Time Lag (days)',
            yaxis_title='Distance (m)',
            yaxis=dict(autorange='reversed'),
            height=500
        )

        return fig

    def create_knox_ratio_chart(self, knox_result) -> go.Figure:
        """Line chart of Knox ratios per distance band, one trace per time-lag band"""
        ratios = knox_result.knox_ratios
        fig = go.Figure()

        for j, lag in enumerate(knox_result.temporal_bands.labels()):
            fig.add_trace(go.Scatter(
                x=knox_result.spatial_bands.labels(),
                y=ratios[:, j],
                mode='lines+markers',
                name=f'{lag} days'
            ))

        fig.add_hline(y=1.0, line_dash='dash', line_color=self.color_scheme['neutral'])
        fig.update_layout(
            title='Knox Ratio (observed / median simulated)',
            xaxis_title='Distance (m)',
            yaxis_title='Knox Ratio',
            height=400
        )

        return fig

    def create_cluster_size_chart(self, cluster_summary: pd.DataFrame,
                                  breaks: List[float] = None) -> go.Figure:
        """Histogram of linked cluster sizes with the natural breaks marked"""
        fig = go.Figure()

        if not cluster_summary.empty:
            size_counts = cluster_summary['node_count'].value_counts().sort_index()
            fig.add_trace(go.Bar(
                x=size_counts.index.tolist(),
                y=size_counts.values.tolist(),
                marker_color=self.color_scheme['primary'],
                name='Clusters'
            ))

        for value in (breaks or [])[1:-1]:
            fig.add_vline(x=value - 0.5, line_dash='dot', line_color=self.color_scheme['breaks'])

        fig.update_layout(
            title='Cluster Size Distribution',
            xaxis_title='Events per Cluster',
            yaxis_title='Number of Clusters',
            height=400
        )

        return fig

    def create_category_summary_chart(self, class_counts: Dict[int, int]) -> go.Figure:
        """Bar chart of clusters per size category"""
        categories = sorted(class_counts)
        fig = go.Figure(data=[go.Bar(
            x=[f'Category {c}' for c in categories],
            y=[class_counts[c] for c in categories],
            marker_color=self.color_scheme['secondary']
        )])

        fig.update_layout(
            title='Clusters per Size Category',
            xaxis_title='Category',
            yaxis_title='Clusters',
            height=350
        )

        return fig


def save_knox_figure(knox_result, save_path: str, alpha: float = None) -> str:
    """Static Knox table: p-value heatmap annotated with observed counts"""
    if alpha is None:
        alpha = CLASSIFICATION_CONFIG["significance_level"]

    p_frame = knox_result.p_value_frame()
    observed = knox_result.observed
    significant = knox_result.significant_cells(alpha)
    annotations = np.array([
        [f"{observed[i, j]}{'*' if significant[i, j] else ''}" for j in range(observed.shape[1])]
        for i in range(observed.shape[0])
    ])

    fig, ax = plt.subplots(figsize=(1.6 * observed.shape[1] + 3, 0.8 * observed.shape[0] + 2))
    sns.heatmap(p_frame, annot=annotations, fmt='', cmap='YlOrRd_r', vmin=0, vmax=1,
                cbar_kws={'label': 'p-value'}, ax=ax)
    ax.set_title(f'Near-Repeat Knox Test (* p < {alpha:g})')
    ax.set_xlabel('Time Lag (days)')
    ax.set_ylabel('Distance (m)')

    plt.tight_layout()
    fig.savefig(save_path, dpi=300, bbox_inches='tight')
    plt.close(fig)
    return save_path
