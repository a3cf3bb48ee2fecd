from .charts import ChartConfig, LANE_COLORS, plot_sweep, plot_timeline

__all__ = ["ChartConfig", "LANE_COLORS", "plot_sweep", "plot_timeline"]
