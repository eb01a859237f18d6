"""Tests for the geometry helpers."""

import pytest

from territory_claim.geo import (
    bounding_box,
    distance_m,
    has_self_intersection,
    haversine_m,
    path_length_m,
    point_in_polygon,
    polygon_area_sq_m,
    project_local,
    segments_intersect,
)
from territory_claim.models import GeoPoint


class TestHaversine:
    """Tests for great-circle distances."""

    def test_zero_distance(self):
        """Same point is 0 m away."""
        assert haversine_m(31.2, 121.4, 31.2, 121.4) == 0.0

    def test_one_degree_latitude(self):
        """One degree of latitude is about 111.2 km."""
        assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_195, rel=1e-3)

    def test_metric_offsets(self, at):
        """Offsets built in meters measure back as the same meters."""
        assert distance_m(at(0, 0), at(30, 40)) == pytest.approx(50.0, rel=1e-4)

    def test_symmetric(self, at):
        """Distance does not depend on argument order."""
        a, b = at(-12, 7), at(80, 33)
        assert distance_m(a, b) == distance_m(b, a)


class TestPathLength:
    """Tests for open path length."""

    def test_no_closing_edge(self, at):
        """Walked distance does not include the way back to the start."""
        path = [at(0, 0), at(30, 0), at(30, 40)]
        assert path_length_m(path) == pytest.approx(70.0, rel=1e-4)

    def test_short_paths(self, at):
        """Empty and single-point paths have zero length."""
        assert path_length_m([]) == 0.0
        assert path_length_m([at(0, 0)]) == 0.0


class TestBoundingBox:
    """Tests for bounding boxes."""

    def test_box_covers_points(self):
        """Box spans the min/max coordinates."""
        box = bounding_box([GeoPoint(1.0, 5.0), GeoPoint(-2.0, 3.0), GeoPoint(0.5, 7.0)])
        assert (box.min_lat, box.max_lat, box.min_lon, box.max_lon) == (-2.0, 1.0, 3.0, 7.0)

    def test_empty_input(self):
        """Empty input gives an all-zero box."""
        box = bounding_box([])
        assert (box.min_lat, box.max_lat, box.min_lon, box.max_lon) == (0.0, 0.0, 0.0, 0.0)

    def test_intersects(self):
        """Overlapping and touching boxes intersect, disjoint ones don't."""
        a = bounding_box([GeoPoint(0, 0), GeoPoint(1, 1)])
        b = bounding_box([GeoPoint(0.5, 0.5), GeoPoint(2, 2)])
        c = bounding_box([GeoPoint(1, 1), GeoPoint(3, 3)])
        d = bounding_box([GeoPoint(5, 5), GeoPoint(6, 6)])
        assert a.intersects(b)
        assert a.intersects(c)
        assert not a.intersects(d)
        assert not d.intersects(a)


class TestPointInPolygon:
    """Tests for even-odd ray casting."""

    def test_inside_and_outside_square(self, at):
        """Center is inside, a far point is outside."""
        square = [at(0, 0), at(20, 0), at(20, 20), at(0, 20)]
        assert point_in_polygon(at(10, 10), square)
        assert not point_in_polygon(at(30, 10), square)
        assert not point_in_polygon(at(-5, -5), square)

    def test_concave_notch(self, at):
        """A point in the notch of a U shape is outside."""
        u_shape = [at(0, 0), at(30, 0), at(30, 30), at(20, 30), at(20, 10), at(10, 10), at(10, 30), at(0, 30)]
        assert not point_in_polygon(at(15, 20), u_shape)
        assert point_in_polygon(at(5, 20), u_shape)
        assert point_in_polygon(at(15, 5), u_shape)

    def test_degenerate_ring(self, at):
        """Fewer than 3 vertices never contain anything."""
        assert not point_in_polygon(at(0, 0), [])
        assert not point_in_polygon(at(0, 0), [at(-1, -1), at(1, 1)])

    def test_vertex_order_does_not_matter(self, at):
        """Clockwise and counter-clockwise rings agree."""
        ring = [at(0, 0), at(20, 0), at(20, 20), at(0, 20)]
        assert point_in_polygon(at(5, 5), ring) == point_in_polygon(at(5, 5), ring[::-1])


class TestSegmentsIntersect:
    """Tests for the orientation crossing test."""

    def test_proper_crossing(self, at):
        """An X crossing is detected."""
        assert segments_intersect(at(0, 0), at(10, 10), at(0, 10), at(10, 0))

    def test_disjoint(self, at):
        """Parallel separate segments don't cross."""
        assert not segments_intersect(at(0, 0), at(10, 0), at(0, 5), at(10, 5))

    def test_collinear_not_counted(self, at):
        """Overlapping collinear segments are not a crossing."""
        assert not segments_intersect(at(0, 0), at(10, 0), at(5, 0), at(15, 0))

    def test_symmetric(self, at):
        """Argument order of the two segments does not matter."""
        a1, a2, b1, b2 = at(0, 0), at(10, 10), at(0, 10), at(10, 0)
        assert segments_intersect(a1, a2, b1, b2) == segments_intersect(b1, b2, a1, a2)


class TestSelfIntersection:
    """Tests for closed-path self-intersection."""

    def test_bowtie(self, at):
        """A figure-eight crosses itself."""
        assert has_self_intersection([at(0, 0), at(20, 20), at(20, 0), at(0, 20)])

    def test_square_with_diagonal(self, at):
        """Walking a square then cutting across it is a crossing."""
        path = [at(0, 0), at(20, 0), at(20, 20), at(0, 20), at(0, 10), at(25, 10)]
        assert has_self_intersection(path)

    def test_convex_square(self, at):
        """A simple square is fine."""
        assert not has_self_intersection([at(0, 0), at(20, 0), at(20, 20), at(0, 20)])

    def test_closing_edge_crossing(self, at):
        """Only the implicit closing edge crosses the path."""
        assert has_self_intersection([at(0, 0), at(20, 0), at(0, 20), at(20, 20)])

    def test_fewer_than_four_points(self, at):
        """Triangles and shorter paths never self-intersect."""
        assert not has_self_intersection([at(0, 0), at(20, 0), at(0, 20)])
        assert not has_self_intersection([at(0, 0), at(20, 0)])
        assert not has_self_intersection([])

    def test_collinear_outbound_leg(self, at, loops):
        """Several collinear points along one side are not a crossing."""
        assert not has_self_intersection([at(e, n) for e, n in loops["accepted"]])


class TestPolygonArea:
    """Tests for local-projection shoelace area."""

    def test_square_area(self, at):
        """A 20 m square is ~400 m²."""
        square = [at(0, 0), at(20, 0), at(20, 20), at(0, 20)]
        assert polygon_area_sq_m(square) == pytest.approx(400.0, rel=0.01)

    def test_orientation_independent(self, at):
        """Reversed rings have the same (absolute) area."""
        ring = [at(0, 0), at(50, 0), at(50, 30), at(0, 30)]
        assert polygon_area_sq_m(ring) == pytest.approx(polygon_area_sq_m(ring[::-1]))

    def test_triangle(self, at):
        """Right triangle 30 x 40 is ~600 m²."""
        assert polygon_area_sq_m([at(0, 0), at(30, 0), at(0, 40)]) == pytest.approx(600.0, rel=0.01)

    def test_degenerate(self, at):
        """Fewer than 3 points has zero area."""
        assert polygon_area_sq_m([]) == 0.0
        assert polygon_area_sq_m([at(0, 0), at(10, 0)]) == 0.0

    def test_walked_loop(self, at, loops):
        """The 12-point claim loop covers ~400 m²."""
        ring = [at(e, n) for e, n in loops["accepted"]]
        assert polygon_area_sq_m(ring) == pytest.approx(400.0, rel=0.01)


class TestProjectLocal:
    """Tests for the local planar projection."""

    def test_centered_on_mean(self, at):
        """Projected coordinates are centered on the vertex mean."""
        xy = project_local([at(0, 0), at(20, 0), at(20, 20), at(0, 20)])
        assert sum(x for x, _ in xy) == pytest.approx(0.0, abs=1e-6)
        assert sum(y for _, y in xy) == pytest.approx(0.0, abs=1e-6)
        assert xy[0][0] == pytest.approx(-10.0, rel=1e-3)
        assert xy[0][1] == pytest.approx(-10.0, rel=1e-3)

    def test_empty(self):
        """Empty input projects to nothing."""
        assert project_local([]) == []
