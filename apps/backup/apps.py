from django.apps import AppConfig


class BackupConfig(AppConfig):
    name = "apps.backup"
    verbose_name = "Backup e restauração"
    default_auto_field = "django.db.models.BigAutoField"

    tracker = None

    def ready(self):
        from .services.state import LastBackupTracker

        self.tracker = LastBackupTracker.from_settings()
