"""
Tests for the great-circle distance helper.
"""
import unittest
import sys
import os

# Add parent directory to path to allow imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.geo import distance_miles

AUSTIN = (30.2672, -97.7431)
ROUND_ROCK = (30.5083, -97.6789)
WASHINGTON = (38.9072, -77.0369)


class TestDistanceMiles(unittest.TestCase):
    """Tests for distance_miles."""

    def test_identical_points(self):
        """A point is zero miles from itself."""
        for lat, lon in [AUSTIN, WASHINGTON, (0.0, 0.0), (89.9, 179.9)]:
            self.assertAlmostEqual(distance_miles(lat, lon, lat, lon), 0.0, places=6)

    def test_symmetric(self):
        """Distance does not depend on direction."""
        self.assertAlmostEqual(
            distance_miles(*AUSTIN, *WASHINGTON),
            distance_miles(*WASHINGTON, *AUSTIN),
            places=9
        )

    def test_known_distance(self):
        """Austin to Round Rock is roughly 17 miles."""
        self.assertAlmostEqual(distance_miles(*AUSTIN, *ROUND_ROCK), 17.1, delta=1.0)

    def test_antipodal_points_are_stable(self):
        """Antipodal points give half the earth's circumference, not NaN."""
        distance = distance_miles(0.0, 0.0, 0.0, 180.0)
        self.assertAlmostEqual(distance, 3959.0 * 3.141592653589793, delta=1.0)


if __name__ == '__main__':
    unittest.main()
