from pathlib import Path

import pytest

from chatbot_test_platform.scenarios.model import Scenario
from chatbot_test_platform.storage.database import Database

from fakes import make_scenario


@pytest.fixture
def hours_scenario() -> Scenario:
    return make_scenario([("Hi", ""), ("What are your hours?", "9 AM to 5 PM")])


@pytest.fixture
async def database(tmp_path: Path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'scenarios.db'}")
    await db.initialize()
    yield db
    await db.close()
