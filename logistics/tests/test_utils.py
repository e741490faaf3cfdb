"""
Geometry Tests
==============

Haversine distance, coordinate checks, bounding box and the map
zoom <-> radius lookup.
"""

import math

from django.test import SimpleTestCase

from logistics.utils import (
    MAX_ZOOM,
    MIN_ZOOM,
    ZOOM_RADIUS_KM,
    bounding_box,
    distance_between,
    haversine_km,
    is_valid_coordinate,
    radius_for_zoom,
    zoom_for_radius,
)
from logistics.tests.helpers import HAIFA, JERUSALEM, TEL_AVIV, north_of


class TestHaversine(SimpleTestCase):

    def test_same_point_is_zero(self):
        self.assertEqual(haversine_km(*TEL_AVIV, *TEL_AVIV), 0.0)

    def test_symmetry(self):
        for a, b in ((TEL_AVIV, HAIFA), (HAIFA, JERUSALEM), ((-33.9, 18.4), (51.5, -0.12))):
            self.assertAlmostEqual(haversine_km(*a, *b), haversine_km(*b, *a), places=9)

    def test_known_distance(self):
        # Tel Aviv - Jerusalem is about 54 km as the crow flies
        self.assertAlmostEqual(haversine_km(*TEL_AVIV, *JERUSALEM), 54.0, delta=1.5)

    def test_north_offset_helper(self):
        self.assertAlmostEqual(distance_between(TEL_AVIV, north_of(TEL_AVIV, 3)), 3.0, delta=0.01)

    def test_antipodal_points(self):
        self.assertAlmostEqual(haversine_km(0, 0, 0, 180), math.pi * 6371.0, places=3)

    def test_bad_input_returns_zero(self):
        self.assertEqual(haversine_km(math.nan, 0, 1, 1), 0.0)
        self.assertEqual(haversine_km(None, 0, 1, 1), 0.0)
        self.assertEqual(haversine_km('32', 0, 1, 1), 0.0)
        self.assertEqual(distance_between(None, HAIFA), 0.0)


class TestCoordinates(SimpleTestCase):

    def test_valid_coordinates(self):
        self.assertTrue(is_valid_coordinate(32.08, 34.78))
        self.assertTrue(is_valid_coordinate(-90, 180))

    def test_invalid_coordinates(self):
        self.assertFalse(is_valid_coordinate(91, 0))
        self.assertFalse(is_valid_coordinate(0, -181))
        self.assertFalse(is_valid_coordinate(None, 0))
        self.assertFalse(is_valid_coordinate(True, 0))
        self.assertFalse(is_valid_coordinate(math.inf, 0))

    def test_bounding_box_encloses_circle(self):
        min_lat, max_lat, min_lng, max_lng = bounding_box(TEL_AVIV, 5)
        for bearing_point in (north_of(TEL_AVIV, 4.9), north_of(TEL_AVIV, -4.9)):
            self.assertTrue(min_lat <= bearing_point[0] <= max_lat)
        self.assertLess(min_lng, TEL_AVIV[1])
        self.assertGreater(max_lng, TEL_AVIV[1])


class TestZoomRadius(SimpleTestCase):

    def test_zoom_15_is_street_level(self):
        self.assertEqual(radius_for_zoom(15), 1.2)

    def test_zoom_is_clamped(self):
        self.assertEqual(radius_for_zoom(3), ZOOM_RADIUS_KM[MIN_ZOOM])
        self.assertEqual(radius_for_zoom(21), ZOOM_RADIUS_KM[MAX_ZOOM])

    def test_both_directions_agree_on_the_table(self):
        for zoom, radius in ZOOM_RADIUS_KM.items():
            self.assertEqual(zoom_for_radius(radius), zoom)
            self.assertEqual(radius_for_zoom(zoom_for_radius(radius)), radius)

    def test_radius_between_entries_picks_zoom_that_covers_it(self):
        self.assertEqual(zoom_for_radius(3.0), 13)
        self.assertEqual(zoom_for_radius(0.1), MAX_ZOOM)
        self.assertEqual(zoom_for_radius(500), MIN_ZOOM)
