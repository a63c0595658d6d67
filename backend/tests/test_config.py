"""Environment-driven settings."""
import os
from pathlib import Path

from tally_migration.core.config import Settings


class TestSettings:
    def test_backup_dir_from_environment(self):
        configured = Path(os.environ["RAW_BACKUP_DIR"])
        assert Settings.RAW_BACKUP_DIR == configured
        assert configured.is_dir()

    def test_instance_creates_backup_dir(self, tmp_path, monkeypatch):
        target = tmp_path / "nested" / "raw"
        monkeypatch.setattr(Settings, "RAW_BACKUP_DIR", target)
        Settings()
        assert target.is_dir()
