"""
Shared pytest fixtures for bracket slot tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os
from datetime import datetime, timedelta

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from brackets.models import Registration


@pytest.fixture
def client():
    """Create a test client."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the app at an empty temporary data directory."""
    import app as app_module

    data_dir = tmp_path / "data"
    (data_dir / "events").mkdir(parents=True)
    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    return str(data_dir)


@pytest.fixture
def make_registrations():
    """Build registrations one minute apart from (id, slot) pairs."""
    def _make(*entries, start=datetime(2026, 3, 1, 9, 0)):
        return [
            Registration(id=reg_id, bracket_slot=slot, created_at=start + timedelta(minutes=i))
            for i, (reg_id, slot) in enumerate(entries)
        ]
    return _make


@pytest.fixture
def sample_event(client, temp_data_dir):
    """An open event with two categories of different sizes."""
    response = client.post('/api/events', json={
        'name': 'Open Cup',
        'categories': [
            {'name': 'Adult Black', 'bracket_size': 2},
            {'name': 'Juvenile Blue'}
        ]
    })
    assert response.status_code == 200
    return response.get_json()['event_id']
