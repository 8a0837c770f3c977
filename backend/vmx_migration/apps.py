from django.apps import AppConfig


class VmxMigrationConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "vmx_migration"
    verbose_name = "VMX migration"
