"""Test that the project setup is working correctly."""

import collection_monitor


def test_version() -> None:
    """Test that version is defined."""
    assert collection_monitor.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from collection_monitor import alerter
    from collection_monitor import analytics
    from collection_monitor import detector
    from collection_monitor import ingestor
    from collection_monitor import retention
    from collection_monitor import services
    from collection_monitor import storage

    # Just verify imports work
    assert ingestor is not None
    assert analytics is not None
    assert detector is not None
    assert alerter is not None
    assert retention is not None
    assert services is not None
    assert storage is not None
