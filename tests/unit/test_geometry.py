"""Unit tests for transition geometry."""

from flow_builder.canvas.geometry import format_coordinate, path_between
from flow_builder.config import CanvasConfig, NodeType


class TestPathBetween:
    """Tests for path_between."""

    def test_vertical_path(self, node_factory, settings):
        """Bottom-centre to top-centre with the control point below the source."""
        source = node_factory("a", NodeType.START, x=100, y=100)
        target = node_factory("b", NodeType.END, x=100, y=300)

        path = path_between(source, target, settings.canvas)

        assert path.svg_path == "M 190 180 Q 190 230, 190 300"
        assert (path.from_point.x, path.from_point.y) == (190, 180)
        assert path.from_point.position == "bottom"
        assert path.to_point.position == "top"
        assert path.to_point.node_id == "b"
        assert path.midpoint == {"x": 190, "y": 240}

    def test_diagonal_path(self, node_factory, settings):
        source = node_factory("a", NodeType.START, x=0, y=0)
        target = node_factory("b", NodeType.END, x=301, y=200)

        path = path_between(source, target, settings.canvas)

        assert path.svg_path == "M 90 80 Q 240.5 130, 391 200"

    def test_same_position_is_degenerate(self, node_factory, settings):
        node = node_factory("a", NodeType.MESSAGE, x=10, y=10)

        path = path_between(node, node, settings.canvas)

        assert path.svg_path == "M 100 90 Q 100 140, 100 10"

    def test_uses_canvas_dimensions(self, node_factory):
        canvas = CanvasConfig(node_width=100, node_height=40, curve_offset=20)
        source = node_factory("a", NodeType.START)
        target = node_factory("b", NodeType.END, y=100)

        path = path_between(source, target, canvas)

        assert path.svg_path == "M 50 40 Q 50 60, 50 100"


def test_format_coordinate():
    assert format_coordinate(12.0) == "12"
    assert format_coordinate(-3.25) == "-3.25"
