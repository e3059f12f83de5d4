from pathlib import Path
import pytest

# Fixture to initialize the location of test data
# files for use in tests.  E.g.
#
#   def test_something(test_data_dir):
#       report = test_data_dir / "psiblast_3rounds.txt"
#
@pytest.fixture(scope="session")
def test_data_dir() -> Path:
    # psilite/tests/data
    return Path(__file__).resolve().parent / "data"


@pytest.fixture
def three_round_report(test_data_dir) -> Path:
    return test_data_dir / "psiblast_3rounds.txt"
