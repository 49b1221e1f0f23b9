"""
Sensor Array Geometry
Named microphone layouts, default tetrahedron, CSV persistence and sanity checks
"""

import os
import numpy as np
import matplotlib.pyplot as plt
from typing import Optional, Tuple, Union
from enum import Enum

from .errors import ConfigurationError, UnsupportedGeometryError


class ArrayGeometry(Enum):
    TETRAHEDRON = "Tetrahedron"
    SQUARE_PLANAR = "Square (Planar)"
    PYRAMID = "Pyramid"
    OCTAHEDRON = "Octahedron"
    PLANAR_HEXAGON = "Planar Hexagon"
    DUAL_TETRAHEDRON = "Dual Tetrahedron"
    CUBE_CORNERS = "Cube Corners"
    STACKED_SQUARES = "Stacked Squares"
    SPHERICAL_SHELL = "Spherical Shell"

    @classmethod
    def from_name(cls, name: Union[str, "ArrayGeometry"]) -> "ArrayGeometry":
        """
        Look up a geometry by display name or member name

        Matching is case-insensitive and treats '_' like ' ', so
        'square_planar', 'Square (Planar)' and 'SQUARE_PLANAR' all resolve.

        Raises:
            UnsupportedGeometryError if nothing matches
        """
        if isinstance(name, cls):
            return name

        key = str(name).strip().lower()
        for member in cls:
            if key in (member.value.lower(), member.name.lower(),
                       member.value.lower().replace(' ', '_'),
                       member.name.lower().replace('_', ' ')):
                return member

        raise UnsupportedGeometryError(f"Unknown array geometry: {name!r}")

    @property
    def n_sensors(self) -> int:
        return _SENSOR_COUNTS[self]

    @property
    def file_stem(self) -> str:
        """Name used for exported files, e.g. 'Square_(Planar)'"""
        return self.value.replace(' ', '_')


_SENSOR_COUNTS = {
    ArrayGeometry.TETRAHEDRON: 4,
    ArrayGeometry.SQUARE_PLANAR: 4,
    ArrayGeometry.PYRAMID: 4,
    ArrayGeometry.OCTAHEDRON: 6,
    ArrayGeometry.PLANAR_HEXAGON: 6,
    ArrayGeometry.DUAL_TETRAHEDRON: 6,
    ArrayGeometry.CUBE_CORNERS: 8,
    ArrayGeometry.STACKED_SQUARES: 8,
    ArrayGeometry.SPHERICAL_SHELL: 8,
}


def default_tetrahedron(spacing: float = 0.5) -> np.ndarray:
    """
    Regular tetrahedron with sensor 0 at the origin

    Args:
        spacing: Edge length in meters

    Returns:
        (4, 3) array of sensor positions
    """
    if spacing <= 0:
        raise ConfigurationError(f"Sensor spacing must be positive, got {spacing}")

    return spacing * np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.5, np.sqrt(3) / 2, 0.0],
        [0.5, np.sqrt(3) / 6, np.sqrt(6) / 3],
    ])


def make_array(
    geometry: Union[str, ArrayGeometry],
    edge_length: float
) -> np.ndarray:
    """
    Build the sensor layout for a named geometry

    Args:
        geometry: ArrayGeometry member or its name
        edge_length: Characteristic length scale in meters

    Returns:
        (N, 3) array of sensor positions, N given by the geometry
    """
    geometry = ArrayGeometry.from_name(geometry)
    if edge_length <= 0:
        raise ConfigurationError(f"Edge length must be positive, got {edge_length}")

    L = float(edge_length)

    if geometry == ArrayGeometry.TETRAHEDRON:
        # Alternate cube vertices
        return (L / np.sqrt(2)) * np.array([
            [1, 1, 1], [-1, -1, 1], [-1, 1, -1], [1, -1, -1]
        ], dtype=float)

    if geometry == ArrayGeometry.SQUARE_PLANAR:
        return (L / 2) * _unit_square()

    if geometry == ArrayGeometry.PYRAMID:
        return L * np.array([
            [-0.5, -0.5, 0.0], [-0.5, 0.5, 0.0], [0.5, -0.5, 0.0], [0.0, 0.0, 0.8]
        ])

    if geometry == ArrayGeometry.OCTAHEDRON:
        return (L / 2) * _axis_points()

    if geometry == ArrayGeometry.PLANAR_HEXAGON:
        theta = np.linspace(0, 2 * np.pi, 7)[:-1]
        return (L / 2) * np.column_stack([np.cos(theta), np.sin(theta), np.zeros(6)])

    if geometry == ArrayGeometry.DUAL_TETRAHEDRON:
        return L * _axis_points()

    if geometry == ArrayGeometry.CUBE_CORNERS:
        corners = [(x, y, z) for z in (-1, 1) for y in (-1, 1) for x in (-1, 1)]
        return (L / 2) * np.array(corners, dtype=float)

    if geometry == ArrayGeometry.STACKED_SQUARES:
        square = (L / 2) * _unit_square()
        return np.vstack([square, square + np.array([0.0, 0.0, L / 2])])

    # Spherical shell: two staggered rings of four on the sphere of radius L/2
    upper_phi = np.arange(4) * np.pi / 2
    lower_phi = upper_phi + np.pi / 4
    theta = np.concatenate([np.full(4, np.pi / 3), np.full(4, 2 * np.pi / 3)])
    phi = np.concatenate([upper_phi, lower_phi])
    return (L / 2) * np.column_stack([
        np.sin(theta) * np.cos(phi),
        np.sin(theta) * np.sin(phi),
        np.cos(theta)
    ])


def _unit_square() -> np.ndarray:
    return np.array([
        [-1, -1, 0], [-1, 1, 0], [1, -1, 0], [1, 1, 0]
    ], dtype=float)


def _axis_points() -> np.ndarray:
    return np.array([
        [1, 0, 0], [-1, 0, 0], [0, 1, 0], [0, -1, 0], [0, 0, 1], [0, 0, -1]
    ], dtype=float)


def validate_sensor_positions(positions, min_sensors: int = 4) -> np.ndarray:
    """
    Check an (N, 3) sensor array and return it as a float array

    Raises:
        ConfigurationError on wrong shape, too few sensors, non-finite
        coordinates or duplicated positions
    """
    pos = np.asarray(positions, dtype=float)

    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ConfigurationError(f"Sensor positions must be an (N, 3) array, got shape {pos.shape}")

    if pos.shape[0] < min_sensors:
        raise ConfigurationError(
            f"Need at least {min_sensors} sensors for 3D localisation, got {pos.shape[0]}"
        )

    if not np.all(np.isfinite(pos)):
        raise ConfigurationError("Sensor positions contain non-finite values")

    if len(np.unique(pos, axis=0)) != len(pos):
        raise ConfigurationError("Duplicate sensor positions found")

    return pos


def is_coplanar(positions: np.ndarray, tol: float = 1e-9) -> bool:
    """
    True if all sensors lie (numerically) in one plane

    Uses the smallest singular value of the centred coordinates relative
    to the largest.
    """
    pos = np.asarray(positions, dtype=float)
    if len(pos) < 4:
        return True

    centred = pos - pos.mean(axis=0)
    s = np.linalg.svd(centred, compute_uv=False)
    if s[0] == 0:
        return True
    return s[-1] / s[0] < tol


def max_baseline(positions: np.ndarray) -> float:
    """Largest pairwise sensor separation in meters"""
    pos = np.asarray(positions, dtype=float)
    diffs = pos[:, np.newaxis, :] - pos[np.newaxis, :, :]
    return float(np.max(np.linalg.norm(diffs, axis=2)))


def positions_filename(geometry: Union[str, ArrayGeometry]) -> str:
    geometry = ArrayGeometry.from_name(geometry)
    return f"{geometry.n_sensors}mics_{geometry.file_stem}.csv"


def save_positions_csv(
    positions: np.ndarray,
    folder: str,
    geometry: Optional[Union[str, ArrayGeometry]] = None,
    filename: Optional[str] = None
) -> str:
    """
    Write an (N, 3) position array as comma-separated X, Y, Z rows

    Args:
        positions: Sensor positions
        folder: Output directory (created if missing)
        geometry: Used to derive the file name when filename is not given
        filename: Explicit file name

    Returns:
        Path of the written file
    """
    if filename is None:
        if geometry is None:
            raise ValueError("Either geometry or filename must be given")
        filename = positions_filename(geometry)

    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, filename)
    np.savetxt(path, np.asarray(positions, dtype=float), delimiter=',', fmt='%.10g')

    return path


def load_positions_csv(path: str) -> np.ndarray:
    """
    Read sensor positions written by save_positions_csv (or any N x 3 CSV)

    Raises:
        FileNotFoundError if the file is missing
        ConfigurationError if the content is not an N x 3 array with N >= 3
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Positions file not found: {path}")

    data = np.loadtxt(path, delimiter=',', ndmin=2)

    if data.shape[1] != 3 or data.shape[0] < 3:
        raise ConfigurationError(
            f"Invalid sensor configuration in {path}: expected N x 3 array, got {data.shape}"
        )

    return data


def plot_array(
    positions: np.ndarray,
    title: Optional[str] = None,
    save_path: Optional[str] = None
):
    """
    3D scatter of sensor positions with index labels and connecting edges

    Args:
        positions: (N, 3) sensor positions
        title: Figure title
        save_path: If given, the figure is saved there and closed

    Returns:
        Matplotlib figure
    """
    pos = np.asarray(positions, dtype=float)
    n = len(pos)

    fig = plt.figure(figsize=(7, 6))
    ax = fig.add_subplot(projection='3d')
    colors = plt.cm.tab10(np.arange(n) % 10)

    for i in range(n):
        ax.scatter(*pos[i], s=150, color=colors[i])
        ax.text(*pos[i], str(i), fontsize=12, fontweight='bold',
                horizontalalignment='center', verticalalignment='center')

    for i in range(n):
        for j in range(i + 1, n):
            ax.plot(*zip(pos[i], pos[j]), 'k--', linewidth=0.8)

    ax.set_xlabel('X (m)')
    ax.set_ylabel('Y (m)')
    ax.set_zlabel('Z (m)')
    ax.set_title(title or f'{n} Microphones')

    if save_path:
        os.makedirs(os.path.dirname(save_path) or '.', exist_ok=True)
        fig.savefig(save_path, dpi=300)
        plt.close(fig)

    return fig


def compute_az_el(point: np.ndarray, reference: np.ndarray) -> Tuple[float, float]:
    """
    Azimuth and elevation in degrees of point as seen from reference

    azimuth = atan2(dy, dx), elevation = asin(dz / |d|). Both are NaN when
    the two points coincide.
    """
    v = np.asarray(point, dtype=float) - np.asarray(reference, dtype=float)
    r = np.linalg.norm(v)

    if r == 0:
        return float('nan'), float('nan')

    azimuth = np.degrees(np.arctan2(v[1], v[0]))
    elevation = np.degrees(np.arcsin(np.clip(v[2] / r, -1.0, 1.0)))
    return float(azimuth), float(elevation)
