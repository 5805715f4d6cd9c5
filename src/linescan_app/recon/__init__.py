from .triangulate import (
    FrameResult,
    PointCloud,
    approximate_ray_plane_intersection,
    detect_line_peaks,
    find_top_bottom_lines,
    is_valid_projector_row,
    map_projector_row,
    projector_light_plane,
    reference_row,
    triangulate_frame,
)
from .io import load_point_cloud, save_landmarks, save_ply, save_point_cloud

__all__ = [
    "FrameResult",
    "PointCloud",
    "approximate_ray_plane_intersection",
    "detect_line_peaks",
    "find_top_bottom_lines",
    "is_valid_projector_row",
    "map_projector_row",
    "projector_light_plane",
    "reference_row",
    "triangulate_frame",
    "load_point_cloud",
    "save_landmarks",
    "save_ply",
    "save_point_cloud",
]
