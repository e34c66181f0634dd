"""
Pytest configuration and fixtures for station-finder tests.
"""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


@pytest.fixture
def receiver_location():
    """Sample receiver location (Moscow)."""
    return {
        'lat': 55.75,
        'lon': 37.62,
        'grid': 'KO85us'
    }


@pytest.fixture
def sample_payload():
    """Dataset payload with one nearby site, one distant site, one inactive station."""
    return {
        'locations': {
            '1': {
                'name': 'Ostankino',
                'itu': 'RUS',
                'lat': 55.82,
                'lon': 37.61,
                'stations': [
                    {'freq': 101.0, 'station': 'R.Test', 'pi': '7201', 'pol': 'H', 'erp': 5, 'id': 'st-1'},
                    {'freq': 102.5, 'station': 'Other FM', 'pi': '7202', 'pol': 'H', 'erp': 1},
                    {'freq': 101.0, 'station': 'Closed FM', 'pi': '7203', 'inactive': True},
                ],
            },
            '2': {
                'name': 'Tver',
                'itu': 'RUS',
                'lat': 56.86,
                'lon': 35.90,
                'stations': [
                    {'freq': 101.0, 'station': 'Far Away', 'pi': '7204', 'pol': 'V', 'erp': 10},
                ],
            },
            '3': {
                'name': 'Vladivostok',
                'itu': 'RUS',
                'lat': 43.12,
                'lon': 131.89,
                'stations': [
                    {'freq': 101.0, 'station': 'Too Far', 'pi': '7205'},
                ],
            },
        }
    }
