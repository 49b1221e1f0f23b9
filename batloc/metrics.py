"""
Localisation Metrics
Per-point error records, sweep summaries and diagnostic plots
"""

import os
import numpy as np
from typing import Dict, List, Optional, Sequence
from dataclasses import dataclass, field, astuple
import matplotlib.pyplot as plt


# Column order of exported results
RECORD_FIELDS = (
    'sourceX', 'sourceY', 'sourceZ',
    'sourceAzimuthDeg', 'sourceElevationDeg',
    'estimatedX', 'estimatedY', 'estimatedZ',
    'positionErrorCm',
    'estimatedAzimuthDeg', 'estimatedElevationDeg',
)

NAN = float('nan')


@dataclass
class SweepRecord:
    """One grid point: true source, estimate and errors (NaN when missing)"""
    source_x: float
    source_y: float
    source_z: float
    source_azimuth_deg: float
    source_elevation_deg: float
    estimated_x: float = NAN
    estimated_y: float = NAN
    estimated_z: float = NAN
    position_error_cm: float = NAN
    estimated_azimuth_deg: float = NAN
    estimated_elevation_deg: float = NAN

    @property
    def failed(self) -> bool:
        return bool(np.isnan(self.position_error_cm))

    @property
    def source(self) -> np.ndarray:
        return np.array([self.source_x, self.source_y, self.source_z])

    @property
    def estimate(self) -> np.ndarray:
        return np.array([self.estimated_x, self.estimated_y, self.estimated_z])

    @property
    def angular_error_deg(self) -> float:
        return angular_error_deg(
            self.source_azimuth_deg, self.source_elevation_deg,
            self.estimated_azimuth_deg, self.estimated_elevation_deg
        )

    def as_row(self) -> Dict[str, float]:
        """Field name -> value in export order"""
        return dict(zip(RECORD_FIELDS, astuple(self)))

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> 'SweepRecord':
        return cls(*(float(row[name]) for name in RECORD_FIELDS))


@dataclass
class SweepSummary:
    """Aggregate accuracy over a grid sweep"""
    n_points: int = 0
    n_failed: int = 0
    position_rmse_cm: float = NAN
    position_mae_cm: float = NAN
    position_percentiles_cm: Dict[int, float] = field(default_factory=dict)
    median_angular_error_deg: float = NAN

    @property
    def failure_rate(self) -> float:
        return self.n_failed / self.n_points if self.n_points else 0.0


def position_error_cm(estimated: np.ndarray, true_position: np.ndarray) -> float:
    """Euclidean distance between estimate and truth in centimetres"""
    diff = np.asarray(estimated, dtype=float) - np.asarray(true_position, dtype=float)
    return float(100.0 * np.linalg.norm(diff))


def angular_error_deg(
    true_azimuth: float,
    true_elevation: float,
    est_azimuth: float,
    est_elevation: float
) -> float:
    """
    Combined direction error sqrt(d_az^2 + d_el^2) in degrees

    The azimuth difference is wrapped to [-180, 180) so that directions
    either side of the +/-180 degree cut compare as close. NaN inputs give
    NaN.
    """
    d_az = (est_azimuth - true_azimuth + 180.0) % 360.0 - 180.0
    d_el = est_elevation - true_elevation
    return float(np.hypot(d_az, d_el))


def summarize_sweep(
    records: Sequence[SweepRecord],
    percentiles: List[int] = [50, 90, 95, 99]
) -> SweepSummary:
    """
    Summarise a list of sweep records

    Failed points (NaN error) are counted and left out of the statistics.
    """
    summary = SweepSummary(n_points=len(records))
    errors = np.array([r.position_error_cm for r in records], dtype=float)
    ok = ~np.isnan(errors)
    summary.n_failed = int(np.sum(~ok))

    if not np.any(ok):
        return summary

    errors = errors[ok]
    summary.position_rmse_cm = float(np.sqrt(np.mean(errors**2)))
    summary.position_mae_cm = float(np.mean(errors))
    summary.position_percentiles_cm = {p: float(np.percentile(errors, p)) for p in percentiles}

    angular = np.array([r.angular_error_deg for r in records], dtype=float)
    angular = angular[~np.isnan(angular)]
    if len(angular):
        summary.median_angular_error_deg = float(np.median(angular))

    return summary


def _finish(fig, save_path: Optional[str]):
    if save_path:
        os.makedirs(os.path.dirname(save_path) or '.', exist_ok=True)
        fig.savefig(save_path, dpi=150)
        plt.close(fig)
    else:
        plt.show()
    return fig


def plot_localization(
    sensor_positions: np.ndarray,
    true_source: np.ndarray,
    estimate: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
    title: Optional[str] = None
):
    """
    Plot sensors, true source and estimated source in 3D

    Args:
        sensor_positions: (N, 3) sensor coordinates
        true_source: (3,) true source position
        estimate: (3,) estimated position, omitted if None or NaN
        save_path: Optional path to save figure
        title: Figure title
    """
    mics = np.asarray(sensor_positions, dtype=float)
    src = np.asarray(true_source, dtype=float)

    fig = plt.figure(figsize=(8, 7))
    ax = fig.add_subplot(projection='3d')

    ax.scatter(mics[:, 0], mics[:, 1], mics[:, 2], c='k', marker='^', s=60, label='Sensors')
    ax.scatter(*src, c='b', marker='o', s=80, label='True source')

    if estimate is not None and np.all(np.isfinite(estimate)):
        est = np.asarray(estimate, dtype=float)
        ax.scatter(*est, c='r', marker='x', s=80, label='Estimate')
        ax.plot(*zip(src, est), 'r--', linewidth=1)
        err = position_error_cm(est, src)
        title = title or f'Position error {err:.2f} cm'

    ax.set_xlabel('X (m)')
    ax.set_ylabel('Y (m)')
    ax.set_zlabel('Z (m)')
    ax.set_title(title or 'Localisation')
    ax.legend()

    return _finish(fig, save_path)


def plot_error_summary(
    records: Sequence[SweepRecord],
    save_path: Optional[str] = None
):
    """
    Plot the error distribution of a sweep

    Args:
        records: Sweep records
        save_path: Optional path to save figure
    """
    summary = summarize_sweep(records)
    errors = np.array([r.position_error_cm for r in records], dtype=float)
    errors = errors[~np.isnan(errors)]
    angular = np.array([r.angular_error_deg for r in records], dtype=float)
    angular = angular[~np.isnan(angular)]

    fig, axes = plt.subplots(2, 2, figsize=(12, 8))

    # Position error histogram
    ax = axes[0, 0]
    if len(errors):
        ax.hist(errors, bins=30, color='steelblue', edgecolor='k', alpha=0.8)
    ax.set_xlabel('Position Error (cm)')
    ax.set_ylabel('Count')
    ax.set_title('Position Error Distribution')
    ax.grid(True, alpha=0.3)

    # Position error CDF
    ax = axes[0, 1]
    if len(errors):
        sorted_err = np.sort(errors)
        ax.plot(sorted_err, 100 * np.arange(1, len(sorted_err) + 1) / len(sorted_err), 'b-', linewidth=2)
    ax.set_xlabel('Position Error (cm)')
    ax.set_ylabel('CDF (%)')
    ax.set_title('Position Error CDF')
    ax.grid(True, alpha=0.3)

    # Angular error histogram
    ax = axes[1, 0]
    if len(angular):
        ax.hist(angular, bins=30, color='darkorange', edgecolor='k', alpha=0.8)
    ax.set_xlabel('Angular Error (deg)')
    ax.set_ylabel('Count')
    ax.set_title('Direction Error Distribution')
    ax.grid(True, alpha=0.3)

    # Summary text
    ax = axes[1, 1]
    ax.axis('off')
    pct = summary.position_percentiles_cm
    summary_text = f"""Sweep Summary:

Points: {summary.n_points}
Failed: {summary.n_failed} ({summary.failure_rate*100:.1f}%)

Position RMSE: {summary.position_rmse_cm:.2f} cm
Position MAE: {summary.position_mae_cm:.2f} cm
Median Error: {pct.get(50, NAN):.2f} cm
90% Error: {pct.get(90, NAN):.2f} cm
95% Error: {pct.get(95, NAN):.2f} cm

Median Angular Error: {summary.median_angular_error_deg:.2f} deg"""

    ax.text(0.1, 0.9, summary_text, transform=ax.transAxes,
            fontsize=10, verticalalignment='top', family='monospace')

    plt.tight_layout()

    return _finish(fig, save_path)
