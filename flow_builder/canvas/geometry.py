"""
Transition Geometry.

Computes the curved path drawn between two nodes on the canvas.
"""

from typing import Optional

from ..config import CanvasConfig, get_settings
from ..models import ConnectionPoint, FlowNode, TransitionPath


def format_coordinate(value: float) -> str:
    """Render a coordinate without a trailing .0 for whole numbers."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def path_between(
    from_node: FlowNode,
    to_node: FlowNode,
    canvas: Optional[CanvasConfig] = None,
) -> TransitionPath:
    """
    Compute the path of a transition.

    The path leaves the bottom-centre of the source node and enters the
    top-centre of the target through a quadratic curve whose control
    point sits ``curve_offset`` below the source anchor.
    """
    canvas = canvas or get_settings().canvas

    from_x = from_node.position["x"] + canvas.node_width / 2
    from_y = from_node.position["y"] + canvas.node_height
    to_x = to_node.position["x"] + canvas.node_width / 2
    to_y = to_node.position["y"]

    mid_x = (from_x + to_x) / 2
    mid_y = (from_y + to_y) / 2
    control_y = from_y + canvas.curve_offset

    svg_path = (
        f"M {format_coordinate(from_x)} {format_coordinate(from_y)} "
        f"Q {format_coordinate(mid_x)} {format_coordinate(control_y)}, "
        f"{format_coordinate(to_x)} {format_coordinate(to_y)}"
    )

    return TransitionPath(
        from_point=ConnectionPoint(node_id=from_node.id, position="bottom", x=from_x, y=from_y),
        to_point=ConnectionPoint(node_id=to_node.id, position="top", x=to_x, y=to_y),
        svg_path=svg_path,
        midpoint={"x": mid_x, "y": mid_y},
    )
