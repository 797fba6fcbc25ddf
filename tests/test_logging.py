from loguru import logger

from kaisheng.settings import settings
from kaisheng.utils.logging import setup_logging
from kaisheng.utils.paths import get_default_data_dir, get_default_log_dir


def test_default_dirs_are_per_user():
    assert "kaisheng" in get_default_data_dir().parts
    assert "kaisheng" in get_default_log_dir().parts


def test_setup_logging_writes_to_log_dir(data_dir):
    setup_logging(verbose=True)
    try:
        logger.info("downtime started")
        logger.complete()
        assert settings.log_file.parent == data_dir / "logs"
        assert "downtime started" in settings.log_file.read_text()
    finally:
        logger.remove()
